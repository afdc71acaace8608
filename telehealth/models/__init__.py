"""SQLAlchemy models.

Import all models here so Alembic and metadata.create_all see them.
"""

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
from telehealth.models.profile import Profile, Role
from telehealth.models.video_session import VideoSession

__all__ = [
    "Appointment",
    "AppointmentStatus",
    "DoctorAvailability",
    "NotificationChannel",
    "NotificationEvent",
    "NotificationReceipt",
    "NotificationRecipient",
    "Profile",
    "ReceiptStatus",
    "Role",
    "VideoSession",
]
