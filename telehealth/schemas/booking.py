"""Booking schemas for request/response validation."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from telehealth.models.appointment import (
    AppointmentStatus,
    NotificationChannel,
    NotificationEvent,
    NotificationRecipient,
    ReceiptStatus,
)


class BookAppointmentRequest(BaseModel):
    """Schema for requesting a booking."""

    patient_id: str = Field(..., min_length=1, max_length=36)
    doctor_id: str = Field(..., min_length=1, max_length=36)
    scheduled_at: datetime = Field(
        ...,
        description="Start time; must include a timezone offset",
    )
    duration_minutes: Optional[int] = Field(
        None,
        description="Defaults to the configured consultation length",
    )


class AppointmentRead(BaseModel):
    """Schema for reading an appointment record."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    patient_id: str
    doctor_id: str
    scheduled_at: datetime
    duration_minutes: int
    status: AppointmentStatus
    room_ref: Optional[str] = None
    failure_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    version: int
    created_at: Optional[datetime] = None


class ReceiptRead(BaseModel):
    """Schema for reading one notification receipt."""

    model_config = ConfigDict(from_attributes=True)

    appointment_id: str
    event: NotificationEvent
    channel: NotificationChannel
    recipient: NotificationRecipient
    status: ReceiptStatus
    reason: Optional[str] = None
    attempts: int
    provider_message_id: Optional[str] = None
    updated_at: Optional[datetime] = None


class JoinInfo(BaseModel):
    """Join details for the requesting participant only."""

    join_url: str
    token: str
    expires_at: datetime


class AppointmentStatusView(BaseModel):
    """Status of an appointment as seen by one actor."""

    id: str
    status: AppointmentStatus
    patient_id: str
    doctor_id: str
    scheduled_at: datetime
    duration_minutes: int
    failure_reason: Optional[str] = None
    receipts: list[ReceiptRead] = Field(default_factory=list)
    join: Optional[JoinInfo] = None


class SettingsAccessResponse(BaseModel):
    """Response for a settings-area access check."""

    area: str
    actor_id: str
    role: str
