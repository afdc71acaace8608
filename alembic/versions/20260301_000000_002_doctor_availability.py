"""Doctor availability.

Revision ID: 002
Revises: 001
Create Date: 2026-03-01 00:00:00.000000

Adds:
- doctor_availability (recurring weekly windows, UTC, Monday = 0)
- ix_appointments_doctor_schedule for overlap lookups
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create availability table and overlap index."""

    # ========================================================================
    # DOCTOR AVAILABILITY
    # ========================================================================

    op.create_table(
        "doctor_availability",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("doctor_id", sa.String(36), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_doctor_availability"),
        sa.CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_doctor_availability_day_of_week"),
        sa.CheckConstraint("start_time < end_time", name="ck_doctor_availability_window"),
    )
    op.create_index("ix_doctor_availability_doctor_id", "doctor_availability", ["doctor_id"])

    # ========================================================================
    # APPOINTMENT OVERLAP LOOKUPS
    # ========================================================================

    op.create_index(
        "ix_appointments_doctor_schedule",
        "appointments",
        ["doctor_id", "scheduled_at"],
    )


def downgrade() -> None:
    """Drop availability table and overlap index."""
    op.drop_index("ix_appointments_doctor_schedule", table_name="appointments")
    op.drop_index("ix_doctor_availability_doctor_id", table_name="doctor_availability")
    op.drop_table("doctor_availability")
