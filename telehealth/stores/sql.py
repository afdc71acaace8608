"""SQLAlchemy-backed stores.

Each call opens its own session so concurrent units of work never share a
transaction. Slot uniqueness is enforced by the partial unique index on
appointments; status transitions are conditional UPDATEs.
"""

import logging
from collections.abc import AsyncIterator, Collection
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from telehealth.booking.availability import (
    AvailabilityWindow,
    DayOfWeek,
    appointment_window,
    intervals_overlap,
)
from telehealth.booking.state import TERMINAL_STATUSES
from telehealth.core.errors import SlotConflict, StoreUnavailable
from telehealth.models.appointment import (
    Appointment,
    AppointmentStatus,
    NotificationChannel,
    NotificationEvent,
    NotificationReceipt,
    NotificationRecipient,
    ReceiptStatus,
)
from telehealth.models.availability import DoctorAvailability
from telehealth.models.profile import Profile
from telehealth.models.video_session import VideoSession
from telehealth.stores.protocols import (
    AppointmentStore,
    AvailabilityDirectory,
    Contact,
    ContactDirectory,
    VideoSessionStore,
)
from telehealth.utils.time import as_utc, utc_now

logger = logging.getLogger(__name__)

# Longest span an earlier appointment may start before a new one and still overlap it
OVERLAP_LOOKBACK = timedelta(hours=24)


def _plain(value: Any) -> Any:
    """Store enum members by value."""
    return value.value if isinstance(value, Enum) else value


class _SqlStore:
    """Shared session handling for SQL stores."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self.session_factory() as session:
                yield session
        except (OperationalError, InterfaceError) as e:
            logger.warning(f"Database unavailable: {e}")
            raise StoreUnavailable(str(e)) from e


class SqlAppointmentStore(_SqlStore, AppointmentStore):
    """Appointment store on a relational database."""

    async def get(self, appointment_id: str) -> Appointment | None:
        async with self._session() as session:
            result = await session.execute(
                select(Appointment).where(Appointment.id == appointment_id)
            )
            return result.scalar_one_or_none()

    async def insert_reserving_slot(self, appointment: Appointment) -> Appointment:
        start, end = appointment_window(appointment.scheduled_at, appointment.duration_minutes)

        async with self._session() as session:
            # Identical start times are caught by the unique index on commit
            clash = await self._first_overlapping(session, appointment.doctor_id, start, end)
            if clash is not None:
                raise SlotConflict(
                    f"Doctor {appointment.doctor_id} already has an appointment overlapping "
                    f"{start.isoformat()}"
                )

            session.add(appointment)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise SlotConflict(
                    f"Slot {appointment.doctor_id}@{appointment.scheduled_at.isoformat()} "
                    "is already booked"
                ) from e
            await session.refresh(appointment)
            return appointment

    async def find_active_by_slot(
        self,
        doctor_id: str,
        scheduled_at: datetime,
    ) -> Appointment | None:
        async with self._session() as session:
            result = await session.execute(
                select(Appointment).where(
                    Appointment.doctor_id == doctor_id,
                    Appointment.scheduled_at == scheduled_at,
                    Appointment.status.not_in([s.value for s in TERMINAL_STATUSES]),
                )
            )
            return result.scalar_one_or_none()

    async def find_overlapping(
        self,
        doctor_id: str,
        start: datetime,
        end: datetime,
    ) -> Appointment | None:
        async with self._session() as session:
            return await self._first_overlapping(session, doctor_id, as_utc(start), as_utc(end))

    @staticmethod
    async def _first_overlapping(
        session: AsyncSession,
        doctor_id: str,
        start: datetime,
        end: datetime,
    ) -> Appointment | None:
        result = await session.execute(
            select(Appointment)
            .where(
                Appointment.doctor_id == doctor_id,
                Appointment.status.not_in([s.value for s in TERMINAL_STATUSES]),
                Appointment.scheduled_at < end,
                Appointment.scheduled_at > start - OVERLAP_LOOKBACK,
            )
            .order_by(Appointment.scheduled_at)
        )
        for candidate in result.scalars():
            other_start, other_end = appointment_window(
                candidate.scheduled_at, candidate.duration_minutes
            )
            if intervals_overlap(start, end, other_start, other_end):
                return candidate
        return None

    async def compare_and_set(
        self,
        appointment_id: str,
        expected: Collection[AppointmentStatus],
        changes: dict[str, Any],
    ) -> Appointment | None:
        values = {key: _plain(value) for key, value in changes.items()}
        values["version"] = Appointment.version + 1
        values["updated_at"] = utc_now()

        async with self._session() as session:
            result = await session.execute(
                update(Appointment)
                .where(
                    Appointment.id == appointment_id,
                    Appointment.status.in_([_plain(s) for s in expected]),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

            if result.rowcount != 1:
                return None

            refreshed = await session.execute(
                select(Appointment).where(Appointment.id == appointment_id)
            )
            return refreshed.scalar_one_or_none()

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
        async with self._session() as session:
            result = await session.execute(
                select(NotificationReceipt).where(
                    NotificationReceipt.appointment_id == appointment_id,
                    NotificationReceipt.event == _plain(event),
                    NotificationReceipt.channel == _plain(channel),
                    NotificationReceipt.recipient == _plain(recipient),
                )
            )
            receipt = result.scalar_one_or_none()

            if receipt is None:
                receipt = NotificationReceipt(
                    appointment_id=appointment_id,
                    event=_plain(event),
                    channel=_plain(channel),
                    recipient=_plain(recipient),
                )
                session.add(receipt)

            receipt.status = _plain(status)
            receipt.reason = reason
            receipt.attempts = attempts
            receipt.provider_message_id = provider_message_id

            await session.commit()
            await session.refresh(receipt)
            return receipt

    async def list_receipts(self, appointment_id: str) -> list[NotificationReceipt]:
        async with self._session() as session:
            result = await session.execute(
                select(NotificationReceipt)
                .where(NotificationReceipt.appointment_id == appointment_id)
                .order_by(NotificationReceipt.created_at)
            )
            return list(result.scalars().all())

    async def list_failed_receipts(self, limit: int = 100) -> list[NotificationReceipt]:
        async with self._session() as session:
            result = await session.execute(
                select(NotificationReceipt)
                .where(NotificationReceipt.status == ReceiptStatus.FAILED.value)
                .order_by(NotificationReceipt.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())


class SqlVideoSessionStore(_SqlStore, VideoSessionStore):
    """Video session store on a relational database."""

    async def get(self, session_id: str) -> VideoSession | None:
        async with self._session() as session:
            result = await session.execute(
                select(VideoSession).where(VideoSession.id == session_id)
            )
            return result.scalar_one_or_none()

    async def get_for_appointment(self, appointment_id: str) -> VideoSession | None:
        async with self._session() as session:
            result = await session.execute(
                select(VideoSession).where(VideoSession.appointment_id == appointment_id)
            )
            return result.scalar_one_or_none()

    async def save(self, video_session: VideoSession) -> VideoSession:
        async with self._session() as session:
            result = await session.execute(
                select(VideoSession).where(
                    VideoSession.appointment_id == video_session.appointment_id
                )
            )
            existing = result.scalar_one_or_none()

            if existing is None:
                session.add(video_session)
                target = video_session
            else:
                # Replace an expired session in place, keeping its id
                for field in (
                    "room_id",
                    "room_name",
                    "join_url",
                    "patient_token",
                    "doctor_token",
                    "expires_at",
                ):
                    setattr(existing, field, getattr(video_session, field))
                target = existing

            await session.commit()
            await session.refresh(target)
            return target


class SqlContactDirectory(_SqlStore, ContactDirectory):
    """Contact lookup backed by the profiles table."""

    async def get_contact(self, user_id: str) -> Contact | None:
        async with self._session() as session:
            result = await session.execute(select(Profile).where(Profile.id == user_id))
            profile = result.scalar_one_or_none()

        if not profile:
            return None

        return Contact(
            user_id=profile.id,
            full_name=profile.full_name,
            email=profile.email,
            phone=profile.phone,
        )


class SqlAvailabilityDirectory(_SqlStore, AvailabilityDirectory):
    """Availability lookup backed by the doctor_availability table."""

    async def list_windows(self, doctor_id: str) -> list[AvailabilityWindow]:
        async with self._session() as session:
            result = await session.execute(
                select(DoctorAvailability)
                .where(
                    DoctorAvailability.doctor_id == doctor_id,
                    DoctorAvailability.is_active.is_(True),
                )
                .order_by(DoctorAvailability.day_of_week, DoctorAvailability.start_time)
            )
            rows = result.scalars().all()

        return [
            AvailabilityWindow(
                day_of_week=DayOfWeek(row.day_of_week),
                start_time=row.start_time,
                end_time=row.end_time,
            )
            for row in rows
        ]
