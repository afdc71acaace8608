"""Persistence backends for the booking engine."""

from dataclasses import dataclass

from telehealth.core.config import settings
from telehealth.stores.memory import (
    InMemoryAppointmentStore,
    InMemoryAvailabilityDirectory,
    InMemoryContactDirectory,
    InMemoryVideoSessionStore,
)
from telehealth.stores.protocols import (
    AppointmentStore,
    AvailabilityDirectory,
    Contact,
    ContactDirectory,
    VideoSessionStore,
)


@dataclass
class Stores:
    """The set of stores one coordinator instance works against."""

    appointments: AppointmentStore
    sessions: VideoSessionStore
    contacts: ContactDirectory
    availability: AvailabilityDirectory


def get_stores(backend: str | None = None) -> Stores:
    """Get configured store backend.

    Returns SQL stores bound to the application engine, or in-memory
    stores for development and tests.
    """
    backend = backend or settings.store_backend

    if backend == "memory":
        return Stores(
            appointments=InMemoryAppointmentStore(),
            sessions=InMemoryVideoSessionStore(),
            contacts=InMemoryContactDirectory(),
            availability=InMemoryAvailabilityDirectory(),
        )

    from telehealth.db.session import AsyncSessionLocal
    from telehealth.stores.sql import (
        SqlAppointmentStore,
        SqlAvailabilityDirectory,
        SqlContactDirectory,
        SqlVideoSessionStore,
    )

    return Stores(
        appointments=SqlAppointmentStore(AsyncSessionLocal),
        sessions=SqlVideoSessionStore(AsyncSessionLocal),
        contacts=SqlContactDirectory(AsyncSessionLocal),
        availability=SqlAvailabilityDirectory(AsyncSessionLocal),
    )


__all__ = [
    "AppointmentStore",
    "AvailabilityDirectory",
    "Contact",
    "ContactDirectory",
    "Stores",
    "VideoSessionStore",
    "get_stores",
]
