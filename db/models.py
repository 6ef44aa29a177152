from __future__ import annotations

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

CONTRACT_MONTHLY = "monthly_subscription"
CONTRACT_PER_VIDEO = "per_video"
CONTRACT_TYPES = (CONTRACT_MONTHLY, CONTRACT_PER_VIDEO)

STATUS_QUEUED = "queued"
STATUS_UPLOADED_TEMP = "uploaded_temp"
STATUS_UPLOADED = "uploaded"
STATUS_PREVIEW_READY = "preview_ready"
STATUS_PENDING_PAYMENT = "pending_payment"
STATUS_PAID = "paid"
STATUS_DELIVERED = "delivered"
STATUS_EXPIRED = "expired"
STATUS_FAILED = "failed"
VIDEO_STATUSES = (
    STATUS_QUEUED,
    STATUS_UPLOADED_TEMP,
    STATUS_UPLOADED,
    STATUS_PREVIEW_READY,
    STATUS_PENDING_PAYMENT,
    STATUS_PAID,
    STATUS_DELIVERED,
    STATUS_EXPIRED,
    STATUS_FAILED,
)

# JSONB on postgres, plain JSON elsewhere (sqlite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _in_clause(values: tuple[str, ...]) -> str:
    return ", ".join(f"'{value}'" for value in values)


class Client(Base):
    __tablename__ = "clients"

    id: Mapped[UUID] = mapped_column(Uuid(), primary_key=True, default=uuid4)
    legal_name: Mapped[str] = mapped_column(String(255))
    trade_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    retention_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    venues: Mapped[list["VenueInstallation"]] = relationship(back_populates="client")

    __table_args__ = (
        CheckConstraint(
            "retention_days is null or retention_days >= 0",
            name="ck_clients_retention_days",
        ),
    )


class VenueInstallation(Base):
    __tablename__ = "venue_installations"

    id: Mapped[UUID] = mapped_column(Uuid(), primary_key=True, default=uuid4)
    client_id: Mapped[UUID] = mapped_column(Uuid(), ForeignKey("clients.id"))
    venue_name: Mapped[str] = mapped_column(String(120))
    contract_method: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_status: Mapped[str] = mapped_column(Text, default="none")
    installation_status: Mapped[str] = mapped_column(Text, default="active")
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    client: Mapped["Client"] = relationship(back_populates="venues")

    __table_args__ = (
        CheckConstraint(
            f"contract_method is null or contract_method in ({_in_clause(CONTRACT_TYPES)})",
            name="ck_venue_installations_contract_method",
        ),
        CheckConstraint(
            "payment_status in ('none', 'active', 'past_due', 'canceled')",
            name="ck_venue_installations_payment_status",
        ),
        CheckConstraint(
            "installation_status in ('active', 'paused', 'decommissioned')",
            name="ck_venue_installations_installation_status",
        ),
    )


class Video(Base):
    __tablename__ = "videos"

    id: Mapped[UUID] = mapped_column(Uuid(), primary_key=True, default=uuid4)
    clip_id: Mapped[str] = mapped_column(String(64), unique=True)
    client_id: Mapped[UUID] = mapped_column(Uuid(), ForeignKey("clients.id"))
    venue_id: Mapped[UUID] = mapped_column(Uuid(), ForeignKey("venue_installations.id"))
    contract: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(Text, default=STATUS_QUEUED)
    storage_path: Mapped[str | None] = mapped_column(Text, unique=True, nullable=True)
    duration_sec: Mapped[int | None] = mapped_column(Integer, nullable=True)
    size_bytes: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    sha256: Mapped[str | None] = mapped_column(String(64), nullable=True)
    meta: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    captured_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(f"contract in ({_in_clause(CONTRACT_TYPES)})", name="ck_videos_contract"),
        CheckConstraint(f"status in ({_in_clause(VIDEO_STATUSES)})", name="ck_videos_status"),
        Index("ix_videos_client_venue_status", "client_id", "venue_id", "status"),
        Index("ix_videos_expires_at", "expires_at"),
    )

    def meta_value(self, key: str, default: object = None) -> object:
        if not isinstance(self.meta, dict):
            return default
        return self.meta.get(key, default)


class Job(Base):
    __tablename__ = "job"

    id: Mapped[UUID] = mapped_column(Uuid(), primary_key=True, default=uuid4)
    job_type: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(Text)
    payload: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    result: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    error_payload: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    queued_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint("status in ('queued', 'running', 'succeeded', 'failed')", name="ck_job_status"),
    )
