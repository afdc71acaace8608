"""Role gate: the single authorization checkpoint for booking operations.

Actors are resolved from the identity store on every call and never cached
beyond the operation that asked for them.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

from telehealth.core.errors import Forbidden, Unauthenticated
from telehealth.core.security import decode_access_token
from telehealth.models.appointment import Appointment
from telehealth.models.profile import Role

logger = logging.getLogger(__name__)


class Operation(str, Enum):
    """Operations guarded by the role gate."""

    REQUEST_BOOKING = "request_booking"
    CONFIRM_BOOKING = "confirm_booking"
    CANCEL = "cancel"
    VIEW_STATUS = "view_status"
    VIEW_SETTINGS = "view_settings"
    VIEW_AUDIT = "view_audit"


@dataclass(frozen=True)
class Actor:
    """Authenticated caller, valid for a single operation."""

    id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


ADMIN_ROLES = frozenset({Role.ADMIN, Role.SUPER_ADMIN})

# Operations that act on one appointment and need ownership or admin
OWNER_OPERATIONS = frozenset({
    Operation.CONFIRM_BOOKING,
    Operation.CANCEL,
    Operation.VIEW_STATUS,
})


class IdentityStore(ABC):
    """Resolves session tokens to actors."""

    @abstractmethod
    async def resolve(self, token: str) -> Actor | None:
        """Return the actor for a token, or None if it is not valid."""
        pass


class TokenIdentityStore(IdentityStore):
    """Identity store backed by signed JWT access tokens.

    Tokens carry the actor id in ``sub`` and the role in a ``role`` claim.
    """

    async def resolve(self, token: str) -> Actor | None:
        payload = decode_access_token(token)
        if not payload or not payload.get("sub"):
            return None

        try:
            role = Role(payload.get("role"))
        except ValueError:
            logger.warning(f"Token for {payload['sub']} carries unknown role {payload.get('role')!r}")
            return None

        return Actor(id=payload["sub"], role=role)


class RoleGate:
    """Authorize actors against booking operations."""

    def __init__(self, identity_store: IdentityStore) -> None:
        self.identity_store = identity_store

    async def authorize(
        self,
        actor_token: str | None,
        operation: Operation,
        appointment: Appointment | None = None,
        area: str | None = None,
        patient_id: str | None = None,
    ) -> Actor:
        """Resolve the actor and check it may perform ``operation``.

        Args:
            actor_token: Session token presented by the caller
            operation: Operation being attempted
            appointment: Target appointment for owner-scoped operations
            area: Settings area for VIEW_SETTINGS (patient, doctor, admin, super_admin)
            patient_id: Patient the booking is requested for (REQUEST_BOOKING)

        Returns:
            The resolved Actor

        Raises:
            Unauthenticated: token missing or not resolvable
            Forbidden: actor's role does not permit the operation
        """
        if not actor_token:
            raise Unauthenticated("Authentication required")

        actor = await self.identity_store.resolve(actor_token)
        if actor is None:
            raise Unauthenticated("Invalid or expired session")

        if operation == Operation.REQUEST_BOOKING:
            if actor.role != Role.PATIENT:
                raise self._deny(actor, operation, "Only patients can request bookings")
            if patient_id is not None and patient_id != actor.id:
                raise self._deny(actor, operation, "Patients can only book for themselves")
            return actor

        if operation in OWNER_OPERATIONS:
            if appointment is None:
                raise ValueError(f"{operation.value} requires a target appointment")
            if actor.is_admin:
                return actor
            if actor.id in (appointment.patient_id, appointment.doctor_id):
                return actor
            raise self._deny(actor, operation, "Not a participant in this appointment")

        if operation == Operation.VIEW_SETTINGS:
            if area is None or actor.role.value != area:
                raise self._deny(actor, operation, f"Settings area '{area}' is not available")
            return actor

        if operation == Operation.VIEW_AUDIT:
            if not actor.is_admin:
                raise self._deny(actor, operation, "Admin access required")
            return actor

        raise self._deny(actor, operation, "Unknown operation")

    @staticmethod
    def _deny(actor: Actor, operation: Operation, message: str) -> Forbidden:
        logger.info(
            f"Denied {operation.value} for {actor.role.value}:{actor.id}: {message}",
            extra={"actor_id": actor.id, "action": operation.value},
        )
        return Forbidden(message, redirect_area=actor.role.value)
