"""Booking module: appointment state machine and scheduling rules."""

from telehealth.booking.availability import (
    AvailabilityWindow,
    DayOfWeek,
    appointment_window,
    intervals_overlap,
    is_time_available,
)
from telehealth.booking.state import (
    ACTIVE_STATUSES,
    ALLOWED_TRANSITIONS,
    ROOM_STATUSES,
    TERMINAL_STATUSES,
    can_transition,
    sources_for,
)

__all__ = [
    "ACTIVE_STATUSES",
    "ALLOWED_TRANSITIONS",
    "AvailabilityWindow",
    "DayOfWeek",
    "ROOM_STATUSES",
    "TERMINAL_STATUSES",
    "appointment_window",
    "can_transition",
    "intervals_overlap",
    "is_time_available",
    "sources_for",
]
