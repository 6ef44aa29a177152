from __future__ import annotations

from dataclasses import dataclass
import os


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default


@dataclass(frozen=True)
class LifecycleConfig:
    # upload_hint_hours is only echoed to cameras; the signed PUT uses upload_url_ttl_s.
    upload_url_ttl_s: int = 3600
    upload_hint_hours: int = 12
    default_retention_days: int = 3
    list_concurrency: int = 5
    list_max_limit: int = 100
    preview_ttl_s: int = 600
    sign_ttl_min_s: int = 60
    sign_ttl_max_s: int = 86400
    sweep_batch_size: int = 50
    cleanup_interval_s: int = 86400

    @classmethod
    def from_env(cls) -> "LifecycleConfig":
        return cls(
            upload_url_ttl_s=_int_env("UPLOAD_URL_TTL_S", cls.upload_url_ttl_s),
            upload_hint_hours=_int_env("UPLOAD_HINT_HOURS", cls.upload_hint_hours),
            default_retention_days=_int_env("DEFAULT_RETENTION_DAYS", cls.default_retention_days),
            list_concurrency=max(1, _int_env("CLIP_LIST_CONCURRENCY", cls.list_concurrency)),
            preview_ttl_s=_int_env("CLIP_PREVIEW_TTL_S", cls.preview_ttl_s),
            sweep_batch_size=max(1, _int_env("CLIP_SWEEP_BATCH_SIZE", cls.sweep_batch_size)),
            cleanup_interval_s=max(60, _int_env("CLIP_CLEANUP_INTERVAL_S", cls.cleanup_interval_s)),
        )

    def clamp_ttl(self, ttl: int | None, default: int = 3600) -> int:
        value = default if ttl is None else int(ttl)
        return min(self.sign_ttl_max_s, max(self.sign_ttl_min_s, value))
