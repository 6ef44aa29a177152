"""Object-store key layout for venue clips.

    main/clients/{client_id}/venues/{venue_id}/{month}/{day}/{clip_id}.mp4
    temp/{client_id}/{venue_id}/{clip_id}.mp4

Monthly-subscription clips are partitioned by capture date (UTC, month and day
without zero padding) so bucket lifecycle rules can tier them; per-video clips
live in a flat temp area that the expiry sweep reclaims. Existing objects rely
on this exact layout.
"""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import UUID

from db.models import CONTRACT_MONTHLY, CONTRACT_PER_VIDEO

CLIP_EXTENSION = ".mp4"


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def venue_prefix(contract_type: str, client_id: UUID | str, venue_id: UUID | str) -> str:
    if contract_type == CONTRACT_MONTHLY:
        return f"main/clients/{client_id}/venues/{venue_id}/"
    if contract_type == CONTRACT_PER_VIDEO:
        return f"temp/{client_id}/{venue_id}/"
    raise ValueError(f"Unknown contract type: {contract_type}")


def storage_path_for(
    contract_type: str,
    client_id: UUID | str,
    venue_id: UUID | str,
    captured_at: datetime,
    clip_id: str,
) -> str:
    prefix = venue_prefix(contract_type, client_id, venue_id)
    if contract_type == CONTRACT_MONTHLY:
        captured = as_utc(captured_at)
        return f"{prefix}{captured.month}/{captured.day}/{clip_id}{CLIP_EXTENSION}"
    return f"{prefix}{clip_id}{CLIP_EXTENSION}"


def is_safe_key(path: str) -> bool:
    return bool(path) and ".." not in path
