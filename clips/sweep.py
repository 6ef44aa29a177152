from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
import logging
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.models import STATUS_EXPIRED, Video
from storage.s3 import ObjectNotFound, ObjectStoreError

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    selected: int = 0
    expired: int = 0
    already_missing: int = 0
    failed: int = 0
    failed_clip_ids: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


def select_expired(session: Session, now: datetime, batch_size: int) -> list[Video]:
    stmt = (
        select(Video)
        .where(
            Video.expires_at.is_not(None),
            Video.expires_at < now,
            Video.status != STATUS_EXPIRED,
            Video.storage_path.is_not(None),
        )
        .order_by(Video.expires_at.asc())
        .limit(batch_size)
    )
    return list(session.execute(stmt).scalars().all())


def _mark_expired(session: Session, video: Video, now: datetime) -> None:
    video.status = STATUS_EXPIRED
    video.storage_path = None
    video.deleted_at = now
    video.updated_at = now
    session.commit()


def expire_clips(
    session_factory: Callable[[], Session],
    store: Any,
    *,
    batch_size: int = 50,
    now: datetime | None = None,
) -> SweepReport:
    """Reclaim storage for one batch of clips whose retention has passed.

    Each clip is committed on its own. A failed delete leaves the row as it
    was, so it is picked up again by the next run; a delete that reports the
    object as already gone counts as success. Safe to run concurrently with
    itself and to interrupt between clips.
    """
    now = now or datetime.now(UTC)
    report = SweepReport()
    with session_factory() as session:
        videos = select_expired(session, now, batch_size)
        report.selected = len(videos)
        if not videos:
            logger.info("expiry sweep: no expired clips found")
            return report

        targets = [(video, video.clip_id, video.storage_path) for video in videos]
        for video, clip_id, path in targets:
            try:
                # Attributes reload after each commit; another run may have got here first.
                if video.status == STATUS_EXPIRED:
                    continue
                path = video.storage_path
                if not path:
                    logger.warning("expiry sweep: clip %s has no storage_path, marking expired", clip_id)
                else:
                    try:
                        store.delete(path)
                    except ObjectNotFound:
                        report.already_missing += 1
                        logger.info("expiry sweep: clip %s object already gone", clip_id)
                _mark_expired(session, video, now)
            except ObjectStoreError as exc:
                report.failed += 1
                report.failed_clip_ids.append(clip_id)
                logger.error("expiry sweep: failed to delete %s for clip %s: %s", path, clip_id, exc)
                continue
            except SQLAlchemyError as exc:
                session.rollback()
                report.failed += 1
                report.failed_clip_ids.append(clip_id)
                logger.error("expiry sweep: failed to persist clip %s: %s", clip_id, exc)
                continue
            report.expired += 1
            logger.info("expiry sweep: clip %s expired", clip_id)

    logger.info(
        "expiry sweep: selected=%d expired=%d already_missing=%d failed=%d",
        report.selected,
        report.expired,
        report.already_missing,
        report.failed,
    )
    return report
