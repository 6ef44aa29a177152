from .config import LifecycleConfig
from .errors import ClipError, Conflict, InvalidRequest, NotFound, UnprocessableEntity, UpstreamFailure
from .lifecycle import ClipLifecycleManager
from .paths import storage_path_for, venue_prefix
from .sweep import SweepReport, expire_clips

__all__ = [
    "ClipError",
    "ClipLifecycleManager",
    "Conflict",
    "InvalidRequest",
    "LifecycleConfig",
    "NotFound",
    "SweepReport",
    "UnprocessableEntity",
    "UpstreamFailure",
    "expire_clips",
    "storage_path_for",
    "venue_prefix",
]
