from __future__ import annotations

import base64
import binascii
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime, timedelta
import json
import logging
from typing import Any, Callable
from uuid import UUID, uuid4

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db.models import (
    CONTRACT_MONTHLY,
    STATUS_QUEUED,
    STATUS_UPLOADED,
    STATUS_UPLOADED_TEMP,
    Client,
    VenueInstallation,
    Video,
)
from events.publisher import ClipEventPublisher
from storage.s3 import ObjectInfo, ObjectNotFound, ObjectStoreError

from .config import LifecycleConfig
from .errors import Conflict, InvalidRequest, NotFound, UnprocessableEntity, UpstreamFailure
from .paths import as_utc, is_safe_key, storage_path_for, venue_prefix

logger = logging.getLogger(__name__)

# Statuses finalize may (re)apply; billing-owned states are never rolled back.
FINALIZABLE_STATUSES = (STATUS_QUEUED, STATUS_UPLOADED_TEMP, STATUS_UPLOADED)
SIGN_KINDS = ("preview", "download")


def encode_page_token(offset: int) -> str:
    raw = json.dumps({"offset": int(offset)}).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def decode_page_token(token: str | None) -> int:
    if not token:
        return 0
    try:
        payload = json.loads(base64.urlsafe_b64decode(token.encode("ascii")))
        offset = int(payload["offset"])
    except (binascii.Error, ValueError, KeyError, TypeError, UnicodeError):
        raise InvalidRequest("invalid_token", "Malformed pagination token") from None
    if offset < 0:
        raise InvalidRequest("invalid_token", "Malformed pagination token")
    return offset


def _iso(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value is not None else None


def _norm_etag(value: str | None) -> str | None:
    return value.replace('"', "") if value else None


class ClipLifecycleManager:
    """Creation, upload finalization, listing and signing of venue clips.

    The relational store is the index of clips; the object store holds the
    bytes and may disagree with it (sweep deletes are not transactional with
    row updates), so listing checks each object individually.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        store: Any,
        *,
        config: LifecycleConfig | None = None,
        events: ClipEventPublisher | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.store = store
        self.config = config or LifecycleConfig()
        self.events = events
        self._clock = clock or (lambda: datetime.now(UTC))

    def _now(self) -> datetime:
        return as_utc(self._clock())

    # -- creation --------------------------------------------------------

    def create_clip(
        self,
        *,
        client_id: UUID,
        venue_id: UUID,
        captured_at: datetime,
        duration_sec: int | None = None,
        meta: dict | None = None,
    ) -> dict:
        now = self._now()
        with self._session_factory() as session:
            client = session.get(Client, client_id)
            if client is None:
                logger.warning("create_clip: client not found: %s", client_id)
                raise NotFound("client_not_found", f"Client {client_id} not found")
            retention_days = (
                client.retention_days
                if client.retention_days is not None
                else self.config.default_retention_days
            )

            venue = self._venue(session, venue_id, client_id)
            if venue is None or not venue.contract_method:
                logger.warning("create_clip: venue missing or without contract: %s", venue_id)
                raise NotFound(
                    "venue_not_found",
                    f"Venue {venue_id} not found or contract method not defined",
                )
            contract_type = venue.contract_method

            clip_id = str(uuid4())
            storage_path = storage_path_for(contract_type, client_id, venue_id, captured_at, clip_id)

            existing = session.execute(select(Video.id).where(Video.clip_id == clip_id)).first()
            if existing is not None:
                raise Conflict("clip_already_exists", f"Clip {clip_id} already exists")

            session.add(
                Video(
                    clip_id=clip_id,
                    client_id=client_id,
                    venue_id=venue_id,
                    contract=contract_type,
                    status=STATUS_QUEUED,
                    storage_path=storage_path,
                    captured_at=as_utc(captured_at),
                    expires_at=now + timedelta(days=retention_days),
                    duration_sec=duration_sec,
                    meta=meta,
                    created_at=now,
                    updated_at=now,
                )
            )
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise Conflict("clip_already_exists", f"Clip {clip_id} already exists") from exc

        try:
            upload_url = self.store.issue_signed_put(storage_path, self.config.upload_url_ttl_s)
            if not upload_url:
                raise ObjectStoreError(f"empty signed url for {storage_path}")
        except Exception as exc:
            self._discard_clip(clip_id)
            if isinstance(exc, ObjectStoreError):
                raise UpstreamFailure("upload_url_failed", "Failed to create signed upload URL") from exc
            raise

        logger.info("clip %s queued at %s (%s)", clip_id, storage_path, contract_type)
        return {
            "clip_id": clip_id,
            "contract_type": contract_type,
            "storage_path": storage_path,
            "upload_url": upload_url,
            "expires_hint_hours": self.config.upload_hint_hours,
        }

    def _discard_clip(self, clip_id: str) -> None:
        with self._session_factory() as session:
            session.execute(delete(Video).where(Video.clip_id == clip_id))
            session.commit()
        logger.warning("rolled back video record for clip %s", clip_id)

    # -- finalize --------------------------------------------------------

    def finalize_upload(
        self,
        clip_id: str,
        *,
        size_bytes: int,
        sha256: str,
        etag: str | None = None,
    ) -> dict:
        with self._session_factory() as session:
            video = self._video_by_clip_id(session, clip_id)
            if video is None:
                raise NotFound("video_not_found", f"Video {clip_id} not found")
            if not video.storage_path:
                raise UnprocessableEntity("video_storage_path_missing", "Video has no storage_path set")
            storage_path = video.storage_path
            contract_type = video.contract
            client_id = video.client_id
            venue_id = video.venue_id

        info = self._head_uploaded(storage_path)
        self._verify_upload(info, size_bytes=size_bytes, sha256=sha256, etag=etag)

        new_status = STATUS_UPLOADED if contract_type == CONTRACT_MONTHLY else STATUS_UPLOADED_TEMP
        with self._session_factory() as session:
            result = session.execute(
                update(Video)
                .where(
                    Video.clip_id == clip_id,
                    Video.storage_path == storage_path,
                    Video.status.in_(FINALIZABLE_STATUSES),
                )
                .values(
                    status=new_status,
                    sha256=sha256.lower(),
                    size_bytes=info.size,
                    updated_at=self._now(),
                )
            )
            if result.rowcount == 0:
                session.rollback()
                raise Conflict("video_not_finalizable", f"Video {clip_id} can no longer be finalized")
            session.commit()

        self._publish_uploaded(
            {
                "clip_id": clip_id,
                "client_id": str(client_id),
                "venue_id": str(venue_id),
                "contract_type": contract_type,
                "storage_path": storage_path,
                "size_bytes": info.size,
                "sha256": sha256.lower(),
                "status": new_status,
            }
        )

        return {
            "clip_id": clip_id,
            "contract_type": contract_type,
            "storage_path": storage_path,
            "status": new_status,
        }

    def _publish_uploaded(self, message: dict) -> None:
        # The row is already committed; the event is best effort.
        if self.events is None:
            return
        try:
            self.events.publish("clip.uploaded", message)
        except Exception:
            logger.exception("finalize: clip.uploaded event failed for %s", message["clip_id"])

    def _head_uploaded(self, storage_path: str) -> ObjectInfo:
        try:
            return self.store.head(storage_path)
        except ObjectNotFound:
            raise UnprocessableEntity(
                "uploaded_object_not_found",
                "Uploaded object not accessible for verification",
            ) from None
        except ObjectStoreError as exc:
            logger.error("finalize: head failed for %s: %s", storage_path, exc)
            raise UpstreamFailure("object_store_unavailable", "Could not verify uploaded object") from exc

    @staticmethod
    def _verify_upload(info: ObjectInfo, *, size_bytes: int, sha256: str, etag: str | None) -> None:
        if info.size != size_bytes:
            raise UnprocessableEntity("size_mismatch", "Uploaded object size mismatch")
        expected_etag = _norm_etag(etag)
        actual_etag = _norm_etag(info.etag)
        if expected_etag and actual_etag and expected_etag != actual_etag:
            raise UnprocessableEntity("etag_mismatch", "ETag mismatch")
        if info.sha256 and info.sha256.lower() != sha256.lower():
            raise UnprocessableEntity("sha256_mismatch", "SHA-256 checksum mismatch")

    # -- listing ---------------------------------------------------------

    def list_clips(
        self,
        venue_id: UUID,
        *,
        limit: int = 50,
        token: str | None = None,
        include_signed_url: bool = False,
        ttl: int | None = None,
        client_id: UUID | None = None,
    ) -> dict:
        limit = max(1, min(int(limit), self.config.list_max_limit))
        offset = decode_page_token(token)
        ttl = self.config.clamp_ttl(ttl)

        with self._session_factory() as session:
            venue = self._venue(session, venue_id, client_id)
            if venue is None or not venue.contract_method:
                raise NotFound("venue_not_found", f"Venue {venue_id} not found")
            prefix = venue_prefix(venue.contract_method, venue.client_id, venue.id)
            rows = (
                session.execute(
                    select(Video)
                    .where(
                        Video.venue_id == venue.id,
                        Video.storage_path.startswith(prefix, autoescape=True),
                    )
                    .order_by(Video.captured_at.desc(), Video.id)
                    .offset(offset)
                    .limit(limit)
                )
                .scalars()
                .all()
            )
            items = [self._clip_row(row) for row in rows]

        items = self._fan_out(lambda item: self._stat_item(item, include_signed_url, ttl), items)
        has_more = len(items) == limit
        return {
            "items": items,
            "count": len(items),
            "hasMore": has_more,
            "nextToken": encode_page_token(offset + len(items)) if has_more else None,
        }

    def _stat_item(self, item: dict, include_signed_url: bool, ttl: int) -> dict:
        path = item["storage_path"]
        item.update(
            {"size": None, "last_modified": None, "missing": None, "stat_failed": False, "url": None}
        )
        try:
            info = self.store.head(path)
        except ObjectNotFound:
            item["missing"] = True
            return item
        except ObjectStoreError as exc:
            logger.warning("list: head failed for %s: %s", path, exc)
            item["stat_failed"] = True
            return item
        item["missing"] = False
        item["size"] = info.size
        item["last_modified"] = _iso(info.last_modified)
        if include_signed_url:
            item["url"] = self._try_sign(path, ttl)
        return item

    def _try_sign(self, path: str, ttl: int, disposition: str | None = None) -> str | None:
        try:
            return self.store.issue_signed_get(path, ttl, disposition)
        except ObjectStoreError as exc:
            logger.warning("failed to sign url for %s: %s", path, exc)
            return None

    def _fan_out(self, fn: Callable[[dict], dict], items: list[dict]) -> list[dict]:
        if not items:
            return []
        with ThreadPoolExecutor(max_workers=self.config.list_concurrency) as pool:
            return list(pool.map(fn, items))

    # -- signing ---------------------------------------------------------

    def sign_url(self, path: str, *, kind: str = "preview", ttl: int | None = None) -> dict:
        if not is_safe_key(path):
            raise InvalidRequest("invalid_path", "Invalid path")
        if kind not in SIGN_KINDS:
            raise InvalidRequest("invalid_kind", f"kind must be one of {', '.join(SIGN_KINDS)}")
        ttl = self.config.clamp_ttl(ttl)
        disposition = "attachment" if kind == "download" else None
        try:
            url = self.store.issue_signed_get(path, ttl, disposition)
        except ObjectStoreError as exc:
            logger.error("sign: failed for %s: %s", path, exc)
            raise UpstreamFailure("sign_failed", "Failed to sign URL") from exc
        return {"url": url}

    def clips_by_venue(self, venue_id: UUID) -> dict:
        with self._session_factory() as session:
            rows = (
                session.execute(
                    select(Video)
                    .where(Video.venue_id == venue_id)
                    .order_by(Video.captured_at.desc(), Video.id)
                )
                .scalars()
                .all()
            )
            clips = [
                {
                    "clip_id": row.clip_id,
                    "url": row.storage_path,
                    "captured_at": _iso(row.captured_at),
                    "duration_sec": row.duration_sec,
                    "meta": row.meta,
                    "contract_type": row.contract,
                }
                for row in rows
            ]

        def preview(clip: dict) -> dict:
            # "url" carries the storage path until it is signed.
            path = clip["url"]
            clip["url"] = self._try_sign(path, self.config.preview_ttl_s) if path else None
            return clip

        return {"items": self._fan_out(preview, clips)}

    # -- reconciliation --------------------------------------------------

    def reconcile_venue(self, venue_id: UUID, *, max_keys: int = 1000) -> dict:
        with self._session_factory() as session:
            venue = self._venue(session, venue_id)
            if venue is None or not venue.contract_method:
                raise NotFound("venue_not_found", f"Venue {venue_id} not found")
            prefix = venue_prefix(venue.contract_method, venue.client_id, venue.id)
            rows = session.execute(
                select(Video.clip_id, Video.storage_path).where(
                    Video.venue_id == venue.id,
                    Video.storage_path.startswith(prefix, autoescape=True),
                )
            ).all()

        try:
            objects = self.store.list_objects(prefix, max_keys)
        except ObjectStoreError as exc:
            raise UpstreamFailure("object_store_unavailable", "Failed to list objects") from exc

        keys = {obj.key for obj in objects}
        paths = {path for _, path in rows}
        truncated = len(objects) >= max_keys
        missing = [] if truncated else sorted(clip_id for clip_id, path in rows if path not in keys)
        return {
            "venue_id": str(venue.id),
            "prefix": prefix,
            "object_count": len(objects),
            "clip_count": len(rows),
            "orphan_objects": sorted(keys - paths),
            "missing_objects": missing,
            "truncated": truncated,
        }

    # -- helpers ---------------------------------------------------------

    @staticmethod
    def _venue(
        session: Session, venue_id: UUID, client_id: UUID | None = None
    ) -> VenueInstallation | None:
        stmt = select(VenueInstallation).where(VenueInstallation.id == venue_id)
        if client_id is not None:
            stmt = stmt.where(VenueInstallation.client_id == client_id)
        return session.execute(stmt).scalar_one_or_none()

    @staticmethod
    def _video_by_clip_id(session: Session, clip_id: str) -> Video | None:
        return session.execute(select(Video).where(Video.clip_id == clip_id)).scalar_one_or_none()

    @staticmethod
    def _clip_row(row: Video) -> dict:
        return {
            "clip_id": row.clip_id,
            "storage_path": row.storage_path,
            "status": row.status,
            "contract_type": row.contract,
            "captured_at": _iso(row.captured_at),
            "duration_sec": row.duration_sec,
            "size_bytes": row.size_bytes,
            "meta": row.meta,
        }
