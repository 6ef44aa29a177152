from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
import logging
import os
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


class ObjectStoreError(Exception):
    """Object store call failed (network, permissions, throttling)."""


class ObjectNotFound(ObjectStoreError):
    """The requested key does not exist in the bucket."""


@dataclass(frozen=True)
class ObjectInfo:
    key: str
    size: int
    last_modified: datetime | None = None
    etag: str | None = None
    sha256: str | None = None


def _bucket_name() -> str:
    return os.getenv("S3_BUCKET_NAME", "")


def _region() -> str:
    return os.getenv("AWS_REGION", "sa-east-1")


def _endpoint_url() -> str | None:
    return os.getenv("S3_ENDPOINT_URL") or None


def _is_not_found(exc: ClientError) -> bool:
    error = exc.response.get("Error", {}) or {}
    status = (exc.response.get("ResponseMetadata", {}) or {}).get("HTTPStatusCode")
    return status == 404 or str(error.get("Code", "")) in _NOT_FOUND_CODES


def _strip_etag(value: str | None) -> str | None:
    if not value:
        return None
    return value.replace('"', "")


def _checksum_to_hex(value: str | None) -> str | None:
    # Multipart uploads report a composite checksum ("<b64>-<parts>"), not the object digest.
    if not value or "-" in value:
        return None
    try:
        return base64.b64decode(value, validate=True).hex()
    except (binascii.Error, ValueError):
        return None


class S3ObjectStore:
    def __init__(self, bucket: str, client: Any | None = None) -> None:
        if not bucket:
            raise RuntimeError("S3 bucket name is not configured (env: S3_BUCKET_NAME)")
        self.bucket = bucket
        self._client = client or boto3.client(
            "s3",
            region_name=_region(),
            endpoint_url=_endpoint_url(),
            config=Config(signature_version="s3v4"),
        )

    @classmethod
    def from_env(cls) -> "S3ObjectStore":
        return cls(_bucket_name())

    def issue_signed_put(self, key: str, ttl: int) -> str:
        try:
            return self._client.generate_presigned_url(
                "put_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=int(ttl),
                HttpMethod="PUT",
            )
        except (BotoCoreError, ClientError) as exc:
            raise ObjectStoreError(f"sign put failed for {key}: {exc}") from exc

    def issue_signed_get(self, key: str, ttl: int, disposition: str | None = None) -> str:
        params: dict[str, Any] = {"Bucket": self.bucket, "Key": key}
        if disposition:
            params["ResponseContentDisposition"] = disposition
        try:
            return self._client.generate_presigned_url(
                "get_object",
                Params=params,
                ExpiresIn=int(ttl),
            )
        except (BotoCoreError, ClientError) as exc:
            raise ObjectStoreError(f"sign get failed for {key}: {exc}") from exc

    def head(self, key: str) -> ObjectInfo:
        try:
            response = self._client.head_object(Bucket=self.bucket, Key=key, ChecksumMode="ENABLED")
        except ClientError as exc:
            if _is_not_found(exc):
                raise ObjectNotFound(key) from exc
            raise ObjectStoreError(f"head failed for {key}: {exc}") from exc
        except BotoCoreError as exc:
            raise ObjectStoreError(f"head failed for {key}: {exc}") from exc
        return ObjectInfo(
            key=key,
            size=int(response.get("ContentLength") or 0),
            last_modified=response.get("LastModified"),
            etag=_strip_etag(response.get("ETag")),
            sha256=_checksum_to_hex(response.get("ChecksumSHA256")),
        )

    def delete(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if _is_not_found(exc):
                raise ObjectNotFound(key) from exc
            raise ObjectStoreError(f"delete failed for {key}: {exc}") from exc
        except BotoCoreError as exc:
            raise ObjectStoreError(f"delete failed for {key}: {exc}") from exc

    def list_objects(self, prefix: str, max_keys: int = 1000) -> list[ObjectInfo]:
        paginator = self._client.get_paginator("list_objects_v2")
        items: list[ObjectInfo] = []
        try:
            pages = paginator.paginate(
                Bucket=self.bucket,
                Prefix=prefix,
                PaginationConfig={"MaxItems": max_keys},
            )
            for page in pages:
                for entry in page.get("Contents", []) or []:
                    key = entry.get("Key") or ""
                    # Skip "folder" placeholder keys.
                    if not key or key.endswith("/"):
                        continue
                    items.append(
                        ObjectInfo(
                            key=key,
                            size=int(entry.get("Size") or 0),
                            last_modified=entry.get("LastModified"),
                            etag=_strip_etag(entry.get("ETag")),
                        )
                    )
        except (BotoCoreError, ClientError) as exc:
            raise ObjectStoreError(f"list failed for prefix {prefix!r}: {exc}") from exc
        logger.debug("listed %d object(s) under %s", len(items), prefix)
        return items


@lru_cache(maxsize=1)
def get_object_store() -> S3ObjectStore:
    return S3ObjectStore.from_env()
