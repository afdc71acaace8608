"""Appointment state machine.

Requested -> Confirmed -> Provisioned -> Notified is the forward path.
Cancelled is reachable from every non-terminal status; Failed only from
Confirmed/Provisioned on an unrecoverable provisioning error. Cancelled and
Failed are terminal.
"""

from telehealth.models.appointment import AppointmentStatus

# Terminal statuses release the slot and never change again
TERMINAL_STATUSES = frozenset({
    AppointmentStatus.CANCELLED,
    AppointmentStatus.FAILED,
})

# Statuses that hold a doctor slot
ACTIVE_STATUSES = frozenset(set(AppointmentStatus) - TERMINAL_STATUSES)

# Statuses in which the appointment references a video session
ROOM_STATUSES = frozenset({
    AppointmentStatus.PROVISIONED,
    AppointmentStatus.NOTIFIED,
})

ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.REQUESTED: frozenset({
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CANCELLED,
    }),
    AppointmentStatus.CONFIRMED: frozenset({
        AppointmentStatus.PROVISIONED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.FAILED,
    }),
    AppointmentStatus.PROVISIONED: frozenset({
        AppointmentStatus.NOTIFIED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.FAILED,
    }),
    AppointmentStatus.NOTIFIED: frozenset({
        AppointmentStatus.CANCELLED,
    }),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.FAILED: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    """Check whether ``current`` may move to ``target``.

    Examples:
        >>> can_transition("confirmed", "provisioned")
        True
        >>> can_transition("cancelled", "provisioned")
        False
        >>> can_transition("notified", "confirmed")
        False
    """
    return AppointmentStatus(target) in ALLOWED_TRANSITIONS[AppointmentStatus(current)]


def sources_for(target: AppointmentStatus) -> frozenset[AppointmentStatus]:
    """All statuses from which ``target`` is reachable in one step."""
    return frozenset(
        source for source, targets in ALLOWED_TRANSITIONS.items() if target in targets
    )
