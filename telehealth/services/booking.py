"""Booking coordinator.

Owns the appointment lifecycle: slot reservation, confirmation, background
session provisioning, notification fan-out and cancellation. It is the only
writer of appointment status, and every write is a compare-and-set on the
expected source status so a late background outcome can never overwrite a
cancellation.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from functools import partial
from typing import Any, TypeVar
from uuid import uuid4

from telehealth.booking.availability import appointment_window, is_time_available
from telehealth.booking.state import ROOM_STATUSES, sources_for
from telehealth.core.config import settings
from telehealth.core.errors import (
    InvalidBookingRequest,
    NotFound,
    ProvisioningFailed,
    SlotConflict,
    StoreUnavailable,
)
from telehealth.core.logging import audit_logger
from telehealth.core.retry import RetryExhausted, RetryPolicy, retry_async
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
from telehealth.schemas.booking import AppointmentStatusView, JoinInfo, ReceiptRead
from telehealth.services.notifications import (
    NotificationDispatcher,
    NotificationOutcome,
    PlannedSend,
)
from telehealth.services.role_gate import Operation, RoleGate
from telehealth.services.video import SessionProvisioner
from telehealth.stores.protocols import (
    AppointmentStore,
    AvailabilityDirectory,
    Contact,
    ContactDirectory,
    VideoSessionStore,
)
from telehealth.utils.time import as_utc, format_datetime, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Recipients per event; booking failures go to the patient only
EVENT_RECIPIENTS = {
    NotificationEvent.CONFIRMATION: (NotificationRecipient.PATIENT, NotificationRecipient.DOCTOR),
    NotificationEvent.CANCELLATION: (NotificationRecipient.PATIENT, NotificationRecipient.DOCTOR),
    NotificationEvent.BOOKING_FAILED: (NotificationRecipient.PATIENT,),
}

SYSTEM_ACTOR = "booking_coordinator"


def doctor_display_name(full_name: str | None) -> str:
    """Doctor names always carry the "Dr." prefix.

    >>> doctor_display_name("Ada Obi")
    'Dr. Ada Obi'
    >>> doctor_display_name("Dr Ada Obi")
    'Dr Ada Obi'
    """
    name = (full_name or "").strip()
    if not name:
        return "your doctor"
    if name.lower().startswith(("dr ", "dr.")):
        return name
    return f"Dr. {name}"


class BookingCoordinator:
    """Service for booking, orchestrating and cancelling appointments."""

    def __init__(
        self,
        role_gate: RoleGate,
        appointments: AppointmentStore,
        sessions: VideoSessionStore,
        contacts: ContactDirectory,
        provisioner: SessionProvisioner,
        dispatcher: NotificationDispatcher,
        store_retry_policy: RetryPolicy | None = None,
        max_background_tasks: int | None = None,
        availability: AvailabilityDirectory | None = None,
    ):
        self.role_gate = role_gate
        self.appointments = appointments
        self.sessions = sessions
        self.contacts = contacts
        self.availability = availability
        self.provisioner = provisioner
        self.dispatcher = dispatcher
        self.store_retry_policy = store_retry_policy or RetryPolicy.from_settings(
            timeout=settings.store_timeout_seconds
        )
        self._background_slots = asyncio.Semaphore(
            max_background_tasks or settings.max_background_tasks
        )
        self._tasks: set[asyncio.Task] = set()

    # =========================================================================
    # Operations
    # =========================================================================

    async def request_booking(
        self,
        actor_token: str | None,
        patient_id: str,
        doctor_id: str,
        scheduled_at: datetime,
        duration_minutes: int | None = None,
    ) -> Appointment:
        """Reserve a doctor slot for the patient and confirm it.

        Returns once the appointment is confirmed; provisioning and
        notifications continue in the background.

        Raises:
            Unauthenticated: token missing or invalid
            Forbidden: actor is not the patient being booked
            InvalidBookingRequest: request failed validation, or the start
                time is outside the doctor's availability
            SlotConflict: slot already held by, or overlapping, an active
                appointment of the doctor
            StoreUnavailable: store unreachable after retries
        """
        actor = await self.role_gate.authorize(
            actor_token, Operation.REQUEST_BOOKING, patient_id=patient_id
        )

        if duration_minutes is None:
            duration_minutes = settings.default_duration_minutes
        start = self._validate_request(patient_id, doctor_id, scheduled_at, duration_minutes)
        await self._check_schedule(doctor_id, start, duration_minutes)

        appointment = await self._reserve_slot(patient_id, doctor_id, start, duration_minutes)

        try:
            await self.role_gate.authorize(
                actor_token, Operation.CONFIRM_BOOKING, appointment=appointment
            )
            confirmed = await self._store(
                lambda: self.appointments.compare_and_set(
                    appointment.id,
                    {AppointmentStatus.REQUESTED},
                    {"status": AppointmentStatus.CONFIRMED},
                ),
                "confirm appointment",
            )
        except Exception:
            await self._release_reservation(appointment.id)
            raise
        if confirmed is None:
            # Cancelled between reservation and confirmation
            return await self._get_or_raise(appointment.id)

        audit_logger.log(
            action="appointment_booked",
            actor_type=actor.role.value,
            actor_id=actor.id,
            entity_type="appointment",
            entity_id=confirmed.id,
            metadata={
                "doctor_id": doctor_id,
                "scheduled_at": start.isoformat(),
                "duration_minutes": duration_minutes,
            },
        )

        self._spawn(partial(self._orchestrate, confirmed.id), f"orchestrate-{confirmed.id}")
        return confirmed

    async def cancel(self, appointment_id: str, actor_token: str | None) -> Appointment:
        """Cancel an appointment.

        Cancelling an already cancelled (or failed) appointment returns it
        unchanged.

        Raises:
            NotFound: unknown appointment
            Unauthenticated/Forbidden: actor may not cancel it
        """
        appointment = await self._get_or_raise(appointment_id)
        actor = await self.role_gate.authorize(
            actor_token, Operation.CANCEL, appointment=appointment
        )

        while True:
            if appointment.is_terminal:
                logger.info(
                    f"Cancel is a no-op for {AppointmentStatus(appointment.status).value} appointment",
                    extra={"appointment_id": appointment_id, "actor_id": actor.id},
                )
                return appointment

            cancelled = await self._store(
                lambda: self.appointments.compare_and_set(
                    appointment_id,
                    sources_for(AppointmentStatus.CANCELLED),
                    {
                        "status": AppointmentStatus.CANCELLED,
                        "room_ref": None,
                        "cancelled_by": actor.id,
                        "cancelled_at": utc_now(),
                    },
                ),
                "cancel appointment",
            )
            if cancelled is not None:
                break

            # Lost a race with another transition; re-read and decide again
            appointment = await self._get_or_raise(appointment_id)

        audit_logger.log(
            action="appointment_cancelled",
            actor_type=actor.role.value,
            actor_id=actor.id,
            entity_type="appointment",
            entity_id=appointment_id,
            metadata={"previous_status": AppointmentStatus(appointment.status).value},
        )

        self._spawn(
            partial(self._send_event, cancelled, NotificationEvent.CANCELLATION),
            f"cancel-notify-{appointment_id}",
        )
        return cancelled

    async def get_status(
        self,
        appointment_id: str,
        actor_token: str | None,
    ) -> AppointmentStatusView:
        """Status, receipts and the caller's own join details."""
        appointment = await self._get_or_raise(appointment_id)
        actor = await self.role_gate.authorize(
            actor_token, Operation.VIEW_STATUS, appointment=appointment
        )

        receipts = await self._store(
            lambda: self.appointments.list_receipts(appointment_id),
            "list receipts",
        )

        join = None
        status = AppointmentStatus(appointment.status)
        if status in ROOM_STATUSES and appointment.room_ref:
            video_session = await self._store(
                lambda: self.sessions.get(appointment.room_ref),
                "get video session",
            )
            if video_session is not None:
                join = self._join_info_for(actor.id, appointment, video_session)

        return AppointmentStatusView(
            id=appointment.id,
            status=status,
            patient_id=appointment.patient_id,
            doctor_id=appointment.doctor_id,
            scheduled_at=as_utc(appointment.scheduled_at),
            duration_minutes=appointment.duration_minutes,
            failure_reason=appointment.failure_reason,
            receipts=[ReceiptRead.model_validate(r) for r in receipts],
            join=join,
        )

    async def list_failed_receipts(
        self,
        actor_token: str | None,
        limit: int = 100,
    ) -> list[NotificationReceipt]:
        """Failed sends across appointments, for operators."""
        await self.role_gate.authorize(actor_token, Operation.VIEW_AUDIT)
        return await self._store(
            lambda: self.appointments.list_failed_receipts(limit),
            "list failed receipts",
        )

    async def record_receipt(
        self,
        appointment_id: str,
        event: NotificationEvent,
        channel: NotificationChannel,
        recipient: NotificationRecipient,
        outcome: NotificationOutcome,
    ) -> NotificationReceipt:
        """Persist one send outcome.

        The first successful confirmation send moves a provisioned
        appointment to notified.
        """
        receipt = await self._store(
            lambda: self.appointments.upsert_receipt(
                appointment_id,
                event,
                channel,
                recipient,
                status=outcome.status,
                reason=outcome.reason,
                attempts=outcome.attempts,
                provider_message_id=outcome.provider_message_id,
            ),
            "record receipt",
        )

        if event == NotificationEvent.CONFIRMATION and outcome.status == ReceiptStatus.SENT:
            notified = await self._store(
                lambda: self.appointments.compare_and_set(
                    appointment_id,
                    {AppointmentStatus.PROVISIONED},
                    {"status": AppointmentStatus.NOTIFIED},
                ),
                "mark notified",
            )
            if notified is not None:
                logger.info("Appointment notified", extra={"appointment_id": appointment_id})

        return receipt

    async def wait_for_background(self, timeout: float | None = None) -> bool:
        """Wait for in-flight background work, including work it spawns.

        Returns False if the timeout elapsed; unfinished tasks are cancelled.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout

        while self._tasks:
            remaining = None if deadline is None else max(deadline - loop.time(), 0)
            pending = {task for task in self._tasks if not task.done()}
            if not pending:
                break
            _, not_done = await asyncio.wait(pending, timeout=remaining)
            if not_done:
                logger.warning(f"Cancelling {len(not_done)} background tasks on drain timeout")
                for task in not_done:
                    task.cancel()
                await asyncio.gather(*not_done, return_exceptions=True)
                return False
        return True

    # =========================================================================
    # Background orchestration
    # =========================================================================

    async def _orchestrate(self, appointment_id: str) -> None:
        """Provision the session, then notify both participants.

        Any failure that leaves the appointment without a usable session
        ends in Failed so the slot is released and the patient is told.
        """
        try:
            appointment = await self._store(
                lambda: self.appointments.get(appointment_id), "load appointment"
            )
        except StoreUnavailable as e:
            logger.error(
                f"Could not load appointment for provisioning: {e}",
                extra={"appointment_id": appointment_id},
            )
            await self._fail(appointment_id, "Booking could not be completed; please book again")
            return

        if appointment is None or appointment.status != AppointmentStatus.CONFIRMED:
            logger.info(
                "Skipping provisioning; appointment is no longer confirmed",
                extra={"appointment_id": appointment_id},
            )
            return

        try:
            video_session = await self.provisioner.provision(
                appointment.id,
                appointment.patient_id,
                appointment.doctor_id,
                appointment.scheduled_at,
                appointment.duration_minutes,
            )
        except ProvisioningFailed as e:
            logger.error(
                f"Provisioning failed ({'permanent' if e.permanent else 'retries exhausted'}): {e}",
                extra={"appointment_id": appointment_id},
            )
            await self._fail(appointment_id, str(e))
            return

        try:
            provisioned = await self._store(
                lambda: self.appointments.compare_and_set(
                    appointment_id,
                    {AppointmentStatus.CONFIRMED},
                    {"status": AppointmentStatus.PROVISIONED, "room_ref": video_session.id},
                ),
                "mark provisioned",
            )
        except StoreUnavailable as e:
            logger.error(f"Could not attach video session: {e}", extra={"appointment_id": appointment_id})
            await self._fail(appointment_id, "Video session could not be attached to the appointment")
            return

        if provisioned is None:
            # Cancelled while provisioning; the room expires on its own
            logger.info(
                "Appointment left confirmed during provisioning; session not attached",
                extra={"appointment_id": appointment_id},
            )
            return

        audit_logger.log(
            action="session_provisioned",
            actor_type="system",
            actor_id=SYSTEM_ACTOR,
            entity_type="appointment",
            entity_id=appointment_id,
            metadata={"room_name": video_session.room_name},
        )
        await self._send_event(provisioned, NotificationEvent.CONFIRMATION, video_session)

    async def _fail(self, appointment_id: str, reason: str) -> None:
        try:
            failed = await self._store(
                lambda: self.appointments.compare_and_set(
                    appointment_id,
                    sources_for(AppointmentStatus.FAILED),
                    {
                        "status": AppointmentStatus.FAILED,
                        "failure_reason": reason,
                        "room_ref": None,
                    },
                ),
                "mark failed",
            )
        except StoreUnavailable:
            logger.exception(
                "Could not mark appointment failed; it keeps its slot until the store recovers",
                extra={"appointment_id": appointment_id},
            )
            return
        if failed is None:
            return

        audit_logger.log(
            action="appointment_failed",
            actor_type="system",
            actor_id=SYSTEM_ACTOR,
            entity_type="appointment",
            entity_id=appointment_id,
            metadata={"reason": reason},
        )
        await self._send_event(failed, NotificationEvent.BOOKING_FAILED)

    async def _send_event(
        self,
        appointment: Appointment,
        event: NotificationEvent,
        video_session: VideoSession | None = None,
    ) -> None:
        """Fan out one event to its recipients on every channel."""
        patient, doctor = await asyncio.gather(
            self._store(lambda: self.contacts.get_contact(appointment.patient_id), "get patient contact"),
            self._store(lambda: self.contacts.get_contact(appointment.doctor_id), "get doctor contact"),
        )
        contacts = {
            NotificationRecipient.PATIENT: patient,
            NotificationRecipient.DOCTOR: doctor,
        }

        recipients = EVENT_RECIPIENTS[event]
        sends = [
            PlannedSend(channel=channel, recipient=recipient, contact=contacts[recipient])
            for recipient in recipients
            for channel in NotificationChannel
        ]
        template_data = {
            recipient: self._template_data(appointment, patient, doctor, recipient, video_session)
            for recipient in recipients
        }

        for send in sends:
            await self._store(
                lambda send=send: self.appointments.upsert_receipt(
                    appointment.id, event, send.channel, send.recipient, status=ReceiptStatus.PENDING
                ),
                "record pending receipt",
            )

        async def on_outcome(send: PlannedSend, outcome: NotificationOutcome) -> None:
            await self.record_receipt(appointment.id, event, send.channel, send.recipient, outcome)

        await self.dispatcher.fan_out(appointment.id, event, sends, template_data, on_outcome)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _validate_request(
        self,
        patient_id: str,
        doctor_id: str,
        scheduled_at: datetime,
        duration_minutes: int,
    ) -> datetime:
        if scheduled_at.tzinfo is None or scheduled_at.utcoffset() is None:
            raise InvalidBookingRequest("scheduled_at must include a timezone")

        start = as_utc(scheduled_at)
        if start <= utc_now():
            raise InvalidBookingRequest("scheduled_at must be in the future")

        if not settings.min_duration_minutes <= duration_minutes <= settings.max_duration_minutes:
            raise InvalidBookingRequest(
                f"duration_minutes must be between {settings.min_duration_minutes} "
                f"and {settings.max_duration_minutes}"
            )

        if patient_id == doctor_id:
            raise InvalidBookingRequest("patient and doctor must be different people")

        return start

    async def _check_schedule(self, doctor_id: str, start: datetime, duration_minutes: int) -> None:
        """Reject start times outside the doctor's hours or clashing with their bookings."""
        if self.availability is not None:
            windows = await self._store(
                lambda: self.availability.list_windows(doctor_id), "load availability"
            )
            if not is_time_available(start, windows):
                raise InvalidBookingRequest(
                    "Selected time is outside the doctor's availability; please choose another time"
                )

        _, end = appointment_window(start, duration_minutes)
        clash = await self._store(
            lambda: self.appointments.find_overlapping(doctor_id, start, end),
            "check overlapping appointments",
        )
        if clash is not None:
            raise SlotConflict(
                f"Doctor {doctor_id} already has an appointment overlapping {start.isoformat()}"
            )

    async def _reserve_slot(
        self,
        patient_id: str,
        doctor_id: str,
        start: datetime,
        duration_minutes: int,
    ) -> Appointment:
        def new_appointment() -> Appointment:
            return Appointment(
                id=str(uuid4()),
                patient_id=patient_id,
                doctor_id=doctor_id,
                scheduled_at=start,
                duration_minutes=duration_minutes,
                status=AppointmentStatus.REQUESTED,
                version=1,
            )

        try:
            return await self._store(
                lambda: self.appointments.insert_reserving_slot(new_appointment()),
                "reserve slot",
            )
        except SlotConflict:
            holder = await self._store(
                lambda: self.appointments.find_active_by_slot(doctor_id, start),
                "check slot holder",
            )
            if holder is not None:
                raise
            logger.info(f"Slot holder for doctor {doctor_id} was released, retrying reservation")

        return await self._store(
            lambda: self.appointments.insert_reserving_slot(new_appointment()),
            "reserve slot",
        )

    async def _release_reservation(self, appointment_id: str) -> None:
        """Give back a slot whose booking could not be confirmed."""
        try:
            released = await self._store(
                lambda: self.appointments.compare_and_set(
                    appointment_id,
                    {AppointmentStatus.REQUESTED},
                    {
                        "status": AppointmentStatus.CANCELLED,
                        "cancelled_by": SYSTEM_ACTOR,
                        "cancelled_at": utc_now(),
                    },
                ),
                "release reservation",
            )
        except StoreUnavailable:
            logger.exception(
                "Could not release unconfirmed reservation",
                extra={"appointment_id": appointment_id},
            )
            return
        if released is not None:
            logger.warning(
                "Released slot after confirmation failed",
                extra={"appointment_id": appointment_id},
            )

    async def _get_or_raise(self, appointment_id: str) -> Appointment:
        appointment = await self._store(
            lambda: self.appointments.get(appointment_id), "load appointment"
        )
        if appointment is None:
            raise NotFound(f"Appointment {appointment_id} not found")
        return appointment

    async def _store(self, operation: Callable[[], Awaitable[T]], description: str) -> T:
        """Run a store call, retrying transient failures."""
        try:
            result, _ = await retry_async(operation, self.store_retry_policy, description)
            return result
        except RetryExhausted as e:
            raise StoreUnavailable(f"Store unavailable ({description}): {e.last_error}") from e

    @staticmethod
    def _join_info_for(
        actor_id: str,
        appointment: Appointment,
        video_session: VideoSession,
    ) -> JoinInfo | None:
        if actor_id == appointment.patient_id:
            token = video_session.patient_token
        elif actor_id == appointment.doctor_id:
            token = video_session.doctor_token
        else:
            return None
        return JoinInfo(
            join_url=video_session.join_url,
            token=token,
            expires_at=as_utc(video_session.expires_at),
        )

    @staticmethod
    def _template_data(
        appointment: Appointment,
        patient: Contact | None,
        doctor: Contact | None,
        recipient: NotificationRecipient,
        video_session: VideoSession | None,
    ) -> dict[str, Any]:
        start = as_utc(appointment.scheduled_at)
        data: dict[str, Any] = {
            "patient_name": patient.full_name if patient else "there",
            "doctor_name": doctor_display_name(doctor.full_name if doctor else None),
            "date": format_datetime(start, "%A %d %B %Y"),
            "time": format_datetime(start, "%H:%M UTC"),
            "duration": appointment.duration_minutes,
            "portal_url": settings.portal_url,
        }
        if video_session is not None:
            token = (
                video_session.patient_token
                if recipient == NotificationRecipient.PATIENT
                else video_session.doctor_token
            )
            data["join_url"] = f"{video_session.join_url}?t={token}"
        return data

    def _spawn(self, factory: Callable[[], Awaitable[Any]], name: str) -> None:
        """Run background work as a tracked task bounded by the semaphore."""
        task = asyncio.create_task(self._run_background(factory, name), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_background(self, factory: Callable[[], Awaitable[Any]], name: str) -> None:
        async with self._background_slots:
            try:
                await factory()
            except Exception:
                logger.exception(f"Background task {name} failed")
