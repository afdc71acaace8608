"""Booking engine services."""

from telehealth.services.booking import BookingCoordinator
from telehealth.services.notifications import (
    NotificationDispatcher,
    get_email_gateway,
    get_sms_gateway,
)
from telehealth.services.role_gate import RoleGate, TokenIdentityStore
from telehealth.services.video import SessionProvisioner, get_video_provider
from telehealth.stores import Stores, get_stores


def build_coordinator(stores: Stores | None = None) -> BookingCoordinator:
    """Wire a coordinator from configured stores, provider and gateways."""
    stores = stores or get_stores()
    return BookingCoordinator(
        role_gate=RoleGate(TokenIdentityStore()),
        appointments=stores.appointments,
        sessions=stores.sessions,
        contacts=stores.contacts,
        availability=stores.availability,
        provisioner=SessionProvisioner(get_video_provider(), stores.sessions),
        dispatcher=NotificationDispatcher(get_email_gateway(), get_sms_gateway()),
    )


__all__ = [
    "BookingCoordinator",
    "NotificationDispatcher",
    "RoleGate",
    "SessionProvisioner",
    "build_coordinator",
]
