"""Appointment booking endpoints."""

from fastapi import APIRouter, Query, status

from telehealth.api.deps import ActorToken, Coordinator
from telehealth.schemas.booking import (
    AppointmentRead,
    AppointmentStatusView,
    BookAppointmentRequest,
    ReceiptRead,
)

router = APIRouter()


@router.post(
    "",
    response_model=AppointmentRead,
    status_code=status.HTTP_201_CREATED,
    summary="Request a booking",
    description="Reserve a doctor slot; the video room is provisioned in the background",
)
async def request_booking(
    request: BookAppointmentRequest,
    coordinator: Coordinator,
    token: ActorToken,
) -> AppointmentRead:
    """Book an appointment for the authenticated patient."""
    appointment = await coordinator.request_booking(
        token,
        patient_id=request.patient_id,
        doctor_id=request.doctor_id,
        scheduled_at=request.scheduled_at,
        duration_minutes=request.duration_minutes,
    )
    return AppointmentRead.model_validate(appointment)


@router.get(
    "/audit/failed-receipts",
    response_model=list[ReceiptRead],
    summary="Failed notification receipts",
    description="Operator view of notification sends that did not go out",
)
async def list_failed_receipts(
    coordinator: Coordinator,
    token: ActorToken,
    limit: int = Query(100, ge=1, le=500),
) -> list[ReceiptRead]:
    receipts = await coordinator.list_failed_receipts(token, limit=limit)
    return [ReceiptRead.model_validate(r) for r in receipts]


@router.get(
    "/{appointment_id}",
    response_model=AppointmentStatusView,
    summary="Appointment status",
)
async def get_appointment_status(
    appointment_id: str,
    coordinator: Coordinator,
    token: ActorToken,
) -> AppointmentStatusView:
    """Status, receipts and the caller's own join details."""
    return await coordinator.get_status(appointment_id, token)


@router.post(
    "/{appointment_id}/cancel",
    response_model=AppointmentRead,
    summary="Cancel an appointment",
    description="Idempotent; cancelling a cancelled appointment returns it unchanged",
)
async def cancel_appointment(
    appointment_id: str,
    coordinator: Coordinator,
    token: ActorToken,
) -> AppointmentRead:
    appointment = await coordinator.cancel(appointment_id, token)
    return AppointmentRead.model_validate(appointment)
