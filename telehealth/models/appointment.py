"""Appointment and notification receipt models."""

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Index, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from telehealth.db.base import Base, TimestampMixin


class AppointmentStatus(str, Enum):
    """Appointment lifecycle status."""

    REQUESTED = "requested"
    CONFIRMED = "confirmed"
    PROVISIONED = "provisioned"
    NOTIFIED = "notified"
    CANCELLED = "cancelled"
    FAILED = "failed"


class NotificationChannel(str, Enum):
    """Delivery channel for notifications."""

    EMAIL = "email"
    SMS = "sms"


class NotificationRecipient(str, Enum):
    """Which participant a notification is addressed to."""

    PATIENT = "patient"
    DOCTOR = "doctor"


class NotificationEvent(str, Enum):
    """Appointment event that triggered a notification."""

    CONFIRMATION = "confirmation"
    CANCELLATION = "cancellation"
    BOOKING_FAILED = "booking_failed"


class ReceiptStatus(str, Enum):
    """Delivery outcome for one channel/recipient pair."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


# Slot-holding statuses are everything except the terminal ones
_ACTIVE_SLOT_CLAUSE = "status NOT IN ('cancelled', 'failed')"


class Appointment(Base, TimestampMixin):
    """Telehealth appointment between a patient and a doctor.

    Mutated only by the booking coordinator through conditional writes
    keyed on ``status``; ``version`` increases on every write.
    """

    __tablename__ = "appointments"
    __table_args__ = (
        # At most one active appointment per doctor slot
        Index(
            "uq_appointments_active_slot",
            "doctor_id",
            "scheduled_at",
            unique=True,
            postgresql_where=text(_ACTIVE_SLOT_CLAUSE),
            sqlite_where=text(_ACTIVE_SLOT_CLAUSE),
        ),
    )

    patient_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        index=True,
    )
    doctor_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        index=True,
    )
    scheduled_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    duration_minutes: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    status: Mapped[AppointmentStatus] = mapped_column(
        String(20),
        default=AppointmentStatus.REQUESTED,
        nullable=False,
        index=True,
    )
    # VideoSession.id once provisioned
    room_ref: Mapped[str | None] = mapped_column(
        String(36),
        nullable=True,
    )
    version: Mapped[int] = mapped_column(
        Integer,
        default=1,
        nullable=False,
    )
    failure_reason: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    cancelled_by: Mapped[str | None] = mapped_column(
        String(36),
        nullable=True,
    )
    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    @property
    def is_terminal(self) -> bool:
        """Cancelled and failed appointments never change again."""
        return self.status in (AppointmentStatus.CANCELLED, AppointmentStatus.FAILED)

    def __repr__(self) -> str:
        return f"<Appointment {self.id} {self.status}>"


class NotificationReceipt(Base, TimestampMixin):
    """Recorded outcome of one notification send."""

    __tablename__ = "notification_receipts"
    __table_args__ = (
        UniqueConstraint(
            "appointment_id",
            "event",
            "channel",
            "recipient",
            name="uq_notification_receipts_send",
        ),
    )

    appointment_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        index=True,
    )
    event: Mapped[NotificationEvent] = mapped_column(
        String(30),
        nullable=False,
    )
    channel: Mapped[NotificationChannel] = mapped_column(
        String(10),
        nullable=False,
    )
    recipient: Mapped[NotificationRecipient] = mapped_column(
        String(10),
        nullable=False,
    )
    status: Mapped[ReceiptStatus] = mapped_column(
        String(10),
        default=ReceiptStatus.PENDING,
        nullable=False,
    )
    reason: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    attempts: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    provider_message_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<NotificationReceipt {self.event}:{self.channel}:{self.recipient} {self.status}>"
