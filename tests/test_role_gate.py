"""Tests for role-based authorization of booking operations."""

from datetime import timedelta

import pytest

from telehealth.core.errors import Forbidden, Unauthenticated
from telehealth.core.security import create_access_token
from telehealth.models.appointment import Appointment
from telehealth.models.profile import Role
from telehealth.services.role_gate import (
    Actor,
    IdentityStore,
    Operation,
    RoleGate,
    TokenIdentityStore,
)
from tests.conftest import ADMIN_ID, DOCTOR_ID, OTHER_PATIENT_ID, PATIENT_ID, make_token


@pytest.fixture
def gate() -> RoleGate:
    return RoleGate(TokenIdentityStore())


@pytest.fixture
def appointment() -> Appointment:
    return Appointment(id="appt-1", patient_id=PATIENT_ID, doctor_id=DOCTOR_ID)


class TestTokenIdentityStore:
    """Tests for resolving JWTs into actors."""

    async def test_resolves_subject_and_role(self):
        """A valid token yields its subject and role."""
        actor = await TokenIdentityStore().resolve(make_token(DOCTOR_ID, Role.DOCTOR))

        assert actor == Actor(id=DOCTOR_ID, role=Role.DOCTOR)

    async def test_unknown_role_is_rejected(self):
        """Tokens with a role outside the known set do not resolve."""
        token = create_access_token(subject=PATIENT_ID, additional_claims={"role": "nurse"})

        assert await TokenIdentityStore().resolve(token) is None

    async def test_expired_token_is_rejected(self):
        """Expired tokens do not resolve."""
        token = create_access_token(
            subject=PATIENT_ID,
            expires_delta=timedelta(minutes=-1),
            additional_claims={"role": "patient"},
        )

        assert await TokenIdentityStore().resolve(token) is None

    async def test_garbage_token_is_rejected(self):
        """Malformed tokens do not resolve."""
        assert await TokenIdentityStore().resolve("not-a-jwt") is None


class TestAuthorize:
    """Tests for RoleGate.authorize."""

    async def test_missing_token(self, gate):
        """No token means unauthenticated."""
        with pytest.raises(Unauthenticated):
            await gate.authorize(None, Operation.REQUEST_BOOKING)

    async def test_invalid_token(self, gate):
        """An unresolvable token means unauthenticated."""
        with pytest.raises(Unauthenticated):
            await gate.authorize("bogus", Operation.REQUEST_BOOKING)

    @pytest.mark.parametrize("role", [Role.DOCTOR, Role.ADMIN, Role.SUPER_ADMIN])
    async def test_only_patients_request_bookings(self, gate, role):
        """Non-patient roles are denied and pointed back to their own area."""
        with pytest.raises(Forbidden) as exc_info:
            await gate.authorize(make_token("someone", role), Operation.REQUEST_BOOKING)

        assert exc_info.value.redirect_area == role.value

    async def test_patient_requests_for_self(self, gate):
        """A patient may request a booking for themselves."""
        actor = await gate.authorize(
            make_token(PATIENT_ID, Role.PATIENT),
            Operation.REQUEST_BOOKING,
            patient_id=PATIENT_ID,
        )

        assert actor.id == PATIENT_ID

    async def test_patient_cannot_request_for_other(self, gate):
        """A patient may not book on another patient's behalf."""
        with pytest.raises(Forbidden):
            await gate.authorize(
                make_token(PATIENT_ID, Role.PATIENT),
                Operation.REQUEST_BOOKING,
                patient_id=OTHER_PATIENT_ID,
            )

    @pytest.mark.parametrize("operation", [Operation.CANCEL, Operation.VIEW_STATUS, Operation.CONFIRM_BOOKING])
    @pytest.mark.parametrize(
        "user_id,role",
        [
            (PATIENT_ID, Role.PATIENT),
            (DOCTOR_ID, Role.DOCTOR),
            (ADMIN_ID, Role.ADMIN),
            (ADMIN_ID, Role.SUPER_ADMIN),
        ],
    )
    async def test_participants_and_admins_allowed(self, gate, appointment, operation, user_id, role):
        """Participants and admins may act on an appointment."""
        actor = await gate.authorize(make_token(user_id, role), operation, appointment=appointment)

        assert actor.id == user_id

    async def test_other_patient_denied(self, gate, appointment):
        """Non-participants are denied."""
        with pytest.raises(Forbidden) as exc_info:
            await gate.authorize(
                make_token(OTHER_PATIENT_ID, Role.PATIENT),
                Operation.VIEW_STATUS,
                appointment=appointment,
            )

        assert exc_info.value.redirect_area == "patient"

    async def test_other_doctor_denied(self, gate, appointment):
        """A doctor who is not on the appointment is denied."""
        with pytest.raises(Forbidden):
            await gate.authorize(
                make_token("another-doctor", Role.DOCTOR),
                Operation.CANCEL,
                appointment=appointment,
            )

    async def test_owner_operation_requires_appointment(self, gate):
        """Owner-scoped checks need the target appointment."""
        with pytest.raises(ValueError):
            await gate.authorize(make_token(PATIENT_ID, Role.PATIENT), Operation.CANCEL)

    @pytest.mark.parametrize("role", list(Role))
    async def test_settings_area_matches_role(self, gate, role):
        """Each role may view only its own settings area."""
        token = make_token("user", role)

        actor = await gate.authorize(token, Operation.VIEW_SETTINGS, area=role.value)
        assert actor.role == role

        other_area = "doctor" if role != Role.DOCTOR else "patient"
        with pytest.raises(Forbidden) as exc_info:
            await gate.authorize(token, Operation.VIEW_SETTINGS, area=other_area)
        assert exc_info.value.redirect_area == role.value

    async def test_audit_view_requires_admin(self, gate):
        """Only admins may view the operator audit."""
        await gate.authorize(make_token(ADMIN_ID, Role.SUPER_ADMIN), Operation.VIEW_AUDIT)

        with pytest.raises(Forbidden):
            await gate.authorize(make_token(DOCTOR_ID, Role.DOCTOR), Operation.VIEW_AUDIT)

    async def test_identity_resolved_on_every_call(self, appointment):
        """Actors are never cached between operations."""

        class CountingStore(IdentityStore):
            calls = 0

            async def resolve(self, token):
                CountingStore.calls += 1
                return Actor(id=PATIENT_ID, role=Role.PATIENT)

        gate = RoleGate(CountingStore())
        await gate.authorize("t", Operation.VIEW_STATUS, appointment=appointment)
        await gate.authorize("t", Operation.VIEW_STATUS, appointment=appointment)

        assert CountingStore.calls == 2
