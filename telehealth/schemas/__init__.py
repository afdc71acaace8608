"""Pydantic schemas for request/response validation."""

from telehealth.schemas.booking import (
    AppointmentRead,
    AppointmentStatusView,
    BookAppointmentRequest,
    JoinInfo,
    ReceiptRead,
    SettingsAccessResponse,
)

__all__ = [
    "AppointmentRead",
    "AppointmentStatusView",
    "BookAppointmentRequest",
    "JoinInfo",
    "ReceiptRead",
    "SettingsAccessResponse",
]
