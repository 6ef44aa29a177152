"""create clip lifecycle schema

Revision ID: 5a1c9e7d3b20
Revises:
Create Date: 2026-03-02 10:00:00

Purpose:
- clients (tenant + retention policy), venue_installations (contract method),
  videos (one row per clip, unique object key), job (background run tracking)

Operational notes:
- videos.storage_path is unique but nullable; reclaimed clips clear it
- ix_videos_expires_at backs the expiry sweep query
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "5a1c9e7d3b20"
down_revision = None
branch_labels = None
depends_on = None

CONTRACTS = "'monthly_subscription', 'per_video'"
STATUSES = (
    "'queued', 'uploaded_temp', 'uploaded', 'preview_ready', 'pending_payment', "
    "'paid', 'delivered', 'expired', 'failed'"
)


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        nullable=False,
        server_default=sa.text("gen_random_uuid()"),
    )


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    ]


def upgrade() -> None:
    op.execute("create extension if not exists pgcrypto;")

    op.create_table(
        "clients",
        _id_column(),
        sa.Column("legal_name", sa.String(length=255), nullable=False),
        sa.Column("trade_name", sa.String(length=255), nullable=True),
        sa.Column("retention_days", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "retention_days is null or retention_days >= 0",
            name="ck_clients_retention_days",
        ),
    )

    op.create_table(
        "venue_installations",
        _id_column(),
        sa.Column("client_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("venue_name", sa.String(length=120), nullable=False),
        sa.Column("contract_method", sa.Text(), nullable=True),
        sa.Column("payment_status", sa.Text(), nullable=False, server_default="none"),
        sa.Column("installation_status", sa.Text(), nullable=False, server_default="active"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            f"contract_method is null or contract_method in ({CONTRACTS})",
            name="ck_venue_installations_contract_method",
        ),
        sa.CheckConstraint(
            "payment_status in ('none', 'active', 'past_due', 'canceled')",
            name="ck_venue_installations_payment_status",
        ),
        sa.CheckConstraint(
            "installation_status in ('active', 'paused', 'decommissioned')",
            name="ck_venue_installations_installation_status",
        ),
    )
    op.create_index("ix_venue_installations_client_id", "venue_installations", ["client_id"])

    op.create_table(
        "videos",
        _id_column(),
        sa.Column("clip_id", sa.String(length=64), nullable=False),
        sa.Column("client_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column(
            "venue_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("venue_installations.id"),
            nullable=False,
        ),
        sa.Column("contract", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="queued"),
        sa.Column("storage_path", sa.Text(), nullable=True),
        sa.Column("duration_sec", sa.Integer(), nullable=True),
        sa.Column("size_bytes", sa.BigInteger(), nullable=True),
        sa.Column("sha256", sa.String(length=64), nullable=True),
        sa.Column("meta", postgresql.JSONB(), nullable=True),
        sa.Column("captured_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("clip_id", name="uq_videos_clip_id"),
        sa.UniqueConstraint("storage_path", name="uq_videos_storage_path"),
        sa.CheckConstraint(f"contract in ({CONTRACTS})", name="ck_videos_contract"),
        sa.CheckConstraint(f"status in ({STATUSES})", name="ck_videos_status"),
    )
    op.create_index("ix_videos_client_venue_status", "videos", ["client_id", "venue_id", "status"])
    op.create_index("ix_videos_expires_at", "videos", ["expires_at"])
    op.create_index("ix_videos_venue_captured_at", "videos", ["venue_id", sa.text("captured_at desc")])

    op.create_table(
        "job",
        _id_column(),
        sa.Column("job_type", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("payload", postgresql.JSONB(), nullable=True),
        sa.Column("result", postgresql.JSONB(), nullable=True),
        sa.Column("error_payload", postgresql.JSONB(), nullable=True),
        sa.Column("queued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("status in ('queued', 'running', 'succeeded', 'failed')", name="ck_job_status"),
    )
    op.create_index("ix_job_type_status", "job", ["job_type", "status"])


def downgrade() -> None:
    op.drop_index("ix_job_type_status", table_name="job")
    op.drop_table("job")
    op.drop_index("ix_videos_venue_captured_at", table_name="videos")
    op.drop_index("ix_videos_expires_at", table_name="videos")
    op.drop_index("ix_videos_client_venue_status", table_name="videos")
    op.drop_table("videos")
    op.drop_index("ix_venue_installations_client_id", table_name="venue_installations")
    op.drop_table("venue_installations")
    op.drop_table("clients")
