"""In-memory stores for development and tests.

Not for staging/production: nothing survives a restart. A single asyncio
lock serialises writes, which gives the same conditional-write guarantees
as the SQL backend within one process.
"""

import asyncio
from collections.abc import Collection
from datetime import datetime
from typing import Any, TypeVar
from uuid import uuid4

from telehealth.booking.availability import AvailabilityWindow, appointment_window, intervals_overlap
from telehealth.booking.state import TERMINAL_STATUSES
from telehealth.core.errors import SlotConflict
from telehealth.db.base import Base
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
from telehealth.stores.protocols import (
    AppointmentStore,
    AvailabilityDirectory,
    Contact,
    ContactDirectory,
    VideoSessionStore,
)
from telehealth.utils.time import as_utc, utc_now

ModelT = TypeVar("ModelT", bound=Base)


def _clone(obj: ModelT) -> ModelT:
    """Detached copy so callers never mutate stored state."""
    return type(obj)(**{column.key: getattr(obj, column.key) for column in obj.__table__.columns})


def _slot_key(doctor_id: str, scheduled_at: datetime) -> tuple[str, datetime]:
    return doctor_id, as_utc(scheduled_at)


class InMemoryAppointmentStore(AppointmentStore):
    """Appointment store kept in process memory."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._appointments: dict[str, Appointment] = {}
        self._slots: dict[tuple[str, datetime], str] = {}
        self._receipts: dict[tuple[str, str, str, str], NotificationReceipt] = {}

    async def get(self, appointment_id: str) -> Appointment | None:
        stored = self._appointments.get(appointment_id)
        return _clone(stored) if stored else None

    async def insert_reserving_slot(self, appointment: Appointment) -> Appointment:
        key = _slot_key(appointment.doctor_id, appointment.scheduled_at)
        start, end = appointment_window(appointment.scheduled_at, appointment.duration_minutes)

        async with self._lock:
            holder_id = self._slots.get(key)
            if holder_id and self._appointments[holder_id].status not in TERMINAL_STATUSES:
                raise SlotConflict(
                    f"Slot {appointment.doctor_id}@{key[1].isoformat()} is already booked"
                )
            if self._overlapping(appointment.doctor_id, start, end) is not None:
                raise SlotConflict(
                    f"Doctor {appointment.doctor_id} already has an appointment overlapping "
                    f"{start.isoformat()}"
                )

            stored = _clone(appointment)
            stored.id = stored.id or str(uuid4())
            stored.status = stored.status or AppointmentStatus.REQUESTED
            stored.version = stored.version or 1
            stored.created_at = stored.created_at or utc_now()

            self._appointments[stored.id] = stored
            self._slots[key] = stored.id
            return _clone(stored)

    async def find_active_by_slot(
        self,
        doctor_id: str,
        scheduled_at: datetime,
    ) -> Appointment | None:
        holder_id = self._slots.get(_slot_key(doctor_id, scheduled_at))
        if not holder_id:
            return None
        stored = self._appointments[holder_id]
        if stored.status in TERMINAL_STATUSES:
            return None
        return _clone(stored)

    async def find_overlapping(
        self,
        doctor_id: str,
        start: datetime,
        end: datetime,
    ) -> Appointment | None:
        stored = self._overlapping(doctor_id, as_utc(start), as_utc(end))
        return _clone(stored) if stored else None

    def _overlapping(self, doctor_id: str, start: datetime, end: datetime) -> Appointment | None:
        for stored in self._appointments.values():
            if stored.doctor_id != doctor_id or stored.status in TERMINAL_STATUSES:
                continue
            other_start, other_end = appointment_window(stored.scheduled_at, stored.duration_minutes)
            if intervals_overlap(start, end, other_start, other_end):
                return stored
        return None

    async def compare_and_set(
        self,
        appointment_id: str,
        expected: Collection[AppointmentStatus],
        changes: dict[str, Any],
    ) -> Appointment | None:
        async with self._lock:
            stored = self._appointments.get(appointment_id)
            if stored is None or stored.status not in expected:
                return None

            for field, value in changes.items():
                setattr(stored, field, value)
            stored.version += 1
            stored.updated_at = utc_now()

            if stored.status in TERMINAL_STATUSES:
                key = _slot_key(stored.doctor_id, stored.scheduled_at)
                if self._slots.get(key) == stored.id:
                    del self._slots[key]

            return _clone(stored)

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
        key = (appointment_id, event.value, channel.value, recipient.value)

        async with self._lock:
            receipt = self._receipts.get(key)
            now = utc_now()
            if receipt is None:
                receipt = NotificationReceipt(
                    id=str(uuid4()),
                    appointment_id=appointment_id,
                    event=event,
                    channel=channel,
                    recipient=recipient,
                    created_at=now,
                )
                self._receipts[key] = receipt
            else:
                receipt.updated_at = now

            receipt.status = status
            receipt.reason = reason
            receipt.attempts = attempts
            receipt.provider_message_id = provider_message_id
            return _clone(receipt)

    async def list_receipts(self, appointment_id: str) -> list[NotificationReceipt]:
        return [
            _clone(receipt)
            for key, receipt in self._receipts.items()
            if key[0] == appointment_id
        ]

    async def list_failed_receipts(self, limit: int = 100) -> list[NotificationReceipt]:
        failed = [r for r in self._receipts.values() if r.status == ReceiptStatus.FAILED]
        failed.sort(key=lambda r: r.created_at, reverse=True)
        return [_clone(r) for r in failed[:limit]]


class InMemoryVideoSessionStore(VideoSessionStore):
    """Video session store kept in process memory."""

    def __init__(self) -> None:
        self._sessions: dict[str, VideoSession] = {}

    async def get(self, session_id: str) -> VideoSession | None:
        for stored in self._sessions.values():
            if stored.id == session_id:
                return _clone(stored)
        return None

    async def get_for_appointment(self, appointment_id: str) -> VideoSession | None:
        stored = self._sessions.get(appointment_id)
        return _clone(stored) if stored else None

    async def save(self, video_session: VideoSession) -> VideoSession:
        stored = _clone(video_session)
        existing = self._sessions.get(stored.appointment_id)
        stored.id = existing.id if existing else (stored.id or str(uuid4()))
        stored.created_at = existing.created_at if existing else utc_now()
        self._sessions[stored.appointment_id] = stored
        return _clone(stored)


class InMemoryContactDirectory(ContactDirectory):
    """Contact directory seeded from a dict."""

    def __init__(self, contacts: dict[str, Contact] | None = None) -> None:
        self._contacts = dict(contacts or {})

    def add(self, contact: Contact) -> None:
        self._contacts[contact.user_id] = contact

    async def get_contact(self, user_id: str) -> Contact | None:
        return self._contacts.get(user_id)


class InMemoryAvailabilityDirectory(AvailabilityDirectory):
    """Availability windows seeded per doctor."""

    def __init__(self, windows: dict[str, list[AvailabilityWindow]] | None = None) -> None:
        self._windows = {doctor_id: list(items) for doctor_id, items in (windows or {}).items()}

    def add(self, doctor_id: str, window: AvailabilityWindow) -> None:
        self._windows.setdefault(doctor_id, []).append(window)

    async def list_windows(self, doctor_id: str) -> list[AvailabilityWindow]:
        return list(self._windows.get(doctor_id, []))
