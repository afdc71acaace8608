"""Storage contracts consumed by the booking engine.

The engine treats persistence as an opaque durable record store: it only
needs keyed reads, a slot-reserving insert and conditional (compare-and-set)
updates. Any backend offering those primitives can implement these.
"""

from abc import ABC, abstractmethod
from collections.abc import Collection
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from telehealth.booking.availability import AvailabilityWindow
from telehealth.models.appointment import (
    Appointment,
    AppointmentStatus,
    NotificationChannel,
    NotificationEvent,
    NotificationReceipt,
    NotificationRecipient,
    ReceiptStatus,
)
from telehealth.models.video_session import VideoSession


@dataclass(frozen=True)
class Contact:
    """Addressing details for one participant."""

    user_id: str
    full_name: str
    email: str | None = None
    phone: str | None = None


class AppointmentStore(ABC):
    """Durable store for appointments and their notification receipts."""

    @abstractmethod
    async def get(self, appointment_id: str) -> Appointment | None:
        """Return the appointment or None."""
        ...

    @abstractmethod
    async def insert_reserving_slot(self, appointment: Appointment) -> Appointment:
        """Insert a new appointment conditioned on its slot being free.

        Raises:
            SlotConflict: another active appointment holds (doctor_id, scheduled_at)
                or overlaps the new appointment
        """
        ...

    @abstractmethod
    async def find_active_by_slot(
        self,
        doctor_id: str,
        scheduled_at: datetime,
    ) -> Appointment | None:
        """Return the non-terminal appointment holding a slot, if any."""
        ...

    @abstractmethod
    async def find_overlapping(
        self,
        doctor_id: str,
        start: datetime,
        end: datetime,
    ) -> Appointment | None:
        """Return a non-terminal appointment of the doctor overlapping [start, end)."""
        ...

    @abstractmethod
    async def compare_and_set(
        self,
        appointment_id: str,
        expected: Collection[AppointmentStatus],
        changes: dict[str, Any],
    ) -> Appointment | None:
        """Apply ``changes`` only if the current status is in ``expected``.

        Returns the updated appointment, or None when the condition failed
        or the appointment does not exist.
        """
        ...

    @abstractmethod
    async def upsert_receipt(
        self,
        appointment_id: str,
        event: NotificationEvent,
        channel: NotificationChannel,
        recipient: NotificationRecipient,
        status: ReceiptStatus,
        reason: str | None = None,
        attempts: int = 0,
        provider_message_id: str | None = None,
    ) -> NotificationReceipt:
        """Create or replace the receipt for one send."""
        ...

    @abstractmethod
    async def list_receipts(self, appointment_id: str) -> list[NotificationReceipt]:
        """All receipts recorded for an appointment."""
        ...

    @abstractmethod
    async def list_failed_receipts(self, limit: int = 100) -> list[NotificationReceipt]:
        """Most recent failed receipts across appointments (operator view)."""
        ...


class VideoSessionStore(ABC):
    """Store for provisioned video sessions, keyed by appointment."""

    @abstractmethod
    async def get(self, session_id: str) -> VideoSession | None:
        ...

    @abstractmethod
    async def get_for_appointment(self, appointment_id: str) -> VideoSession | None:
        ...

    @abstractmethod
    async def save(self, video_session: VideoSession) -> VideoSession:
        """Insert or replace the session for its appointment."""
        ...


class ContactDirectory(ABC):
    """Read-only lookup of participant contact details."""

    @abstractmethod
    async def get_contact(self, user_id: str) -> Contact | None:
        ...


class AvailabilityDirectory(ABC):
    """Read-only lookup of doctors' weekly availability."""

    @abstractmethod
    async def list_windows(self, doctor_id: str) -> list[AvailabilityWindow]:
        """Active weekly windows for a doctor; empty means unrestricted."""
        ...
