"""Booking schema.

Revision ID: 001
Revises:
Create Date: 2026-01-01 00:00:00.000000

Adds:
- profiles (contact details read for notifications)
- appointments with a partial unique index on active (doctor_id, scheduled_at)
- video_sessions, one per appointment
- notification_receipts, one per (appointment, event, channel, recipient)
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_SLOT_CLAUSE = "status NOT IN ('cancelled', 'failed')"


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    """Create booking tables."""

    # ========================================================================
    # PROFILES
    # ========================================================================

    op.create_table(
        "profiles",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("full_name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_profiles"),
    )
    op.create_index("ix_profiles_role", "profiles", ["role"])

    # ========================================================================
    # APPOINTMENTS
    # ========================================================================

    op.create_table(
        "appointments",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("patient_id", sa.String(36), nullable=False),
        sa.Column("doctor_id", sa.String(36), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="requested"),
        sa.Column("room_ref", sa.String(36), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("cancelled_by", sa.String(36), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_appointments"),
    )
    op.create_index("ix_appointments_patient_id", "appointments", ["patient_id"])
    op.create_index("ix_appointments_doctor_id", "appointments", ["doctor_id"])
    op.create_index("ix_appointments_status", "appointments", ["status"])

    # Slot exclusivity: terminal appointments release the slot
    op.create_index(
        "uq_appointments_active_slot",
        "appointments",
        ["doctor_id", "scheduled_at"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_SLOT_CLAUSE),
        sqlite_where=sa.text(ACTIVE_SLOT_CLAUSE),
    )

    # ========================================================================
    # VIDEO SESSIONS
    # ========================================================================

    op.create_table(
        "video_sessions",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("appointment_id", sa.String(36), nullable=False),
        sa.Column("room_id", sa.String(100), nullable=False),
        sa.Column("room_name", sa.String(100), nullable=False),
        sa.Column("join_url", sa.String(500), nullable=False),
        sa.Column("patient_token", sa.Text(), nullable=False),
        sa.Column("doctor_token", sa.Text(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_video_sessions"),
    )
    op.create_index(
        "ix_video_sessions_appointment_id",
        "video_sessions",
        ["appointment_id"],
        unique=True,
    )

    # ========================================================================
    # NOTIFICATION RECEIPTS
    # ========================================================================

    op.create_table(
        "notification_receipts",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("appointment_id", sa.String(36), nullable=False),
        sa.Column("event", sa.String(30), nullable=False),
        sa.Column("channel", sa.String(10), nullable=False),
        sa.Column("recipient", sa.String(10), nullable=False),
        sa.Column("status", sa.String(10), nullable=False, server_default="pending"),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("provider_message_id", sa.String(255), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_notification_receipts"),
        sa.UniqueConstraint(
            "appointment_id",
            "event",
            "channel",
            "recipient",
            name="uq_notification_receipts_send",
        ),
    )
    op.create_index(
        "ix_notification_receipts_appointment_id",
        "notification_receipts",
        ["appointment_id"],
    )


def downgrade() -> None:
    """Drop booking tables."""
    op.drop_table("notification_receipts")
    op.drop_table("video_sessions")
    op.drop_index("uq_appointments_active_slot", table_name="appointments")
    op.drop_table("appointments")
    op.drop_table("profiles")
