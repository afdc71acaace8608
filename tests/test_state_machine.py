"""Tests for the appointment state machine."""

import pytest

from telehealth.booking import (
    ACTIVE_STATUSES,
    ALLOWED_TRANSITIONS,
    ROOM_STATUSES,
    TERMINAL_STATUSES,
    can_transition,
    sources_for,
)
from telehealth.models.appointment import AppointmentStatus as S


class TestTransitions:
    """Tests for allowed status transitions."""

    @pytest.mark.parametrize(
        "current,target",
        [
            (S.REQUESTED, S.CONFIRMED),
            (S.CONFIRMED, S.PROVISIONED),
            (S.PROVISIONED, S.NOTIFIED),
            (S.CONFIRMED, S.FAILED),
            (S.PROVISIONED, S.FAILED),
        ],
    )
    def test_forward_path(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize("current", [S.REQUESTED, S.CONFIRMED, S.PROVISIONED, S.NOTIFIED])
    def test_cancel_from_any_active_status(self, current):
        """Every non-terminal status can be cancelled."""
        assert can_transition(current, S.CANCELLED)

    @pytest.mark.parametrize("terminal", [S.CANCELLED, S.FAILED])
    def test_terminal_statuses_never_change(self, terminal):
        """Nothing leaves a terminal status."""
        assert ALLOWED_TRANSITIONS[terminal] == frozenset()
        for target in S:
            assert not can_transition(terminal, target)

    def test_no_skipping_or_going_back(self):
        assert not can_transition(S.REQUESTED, S.PROVISIONED)
        assert not can_transition(S.NOTIFIED, S.PROVISIONED)
        assert not can_transition(S.NOTIFIED, S.FAILED)

    def test_accepts_plain_strings(self):
        """Values read back from the database are plain strings."""
        assert can_transition("confirmed", "provisioned")

    def test_sources_for_cancelled_are_active_statuses(self):
        assert sources_for(S.CANCELLED) == ACTIVE_STATUSES

    def test_sources_for_failed(self):
        assert sources_for(S.FAILED) == {S.CONFIRMED, S.PROVISIONED}


def test_status_groups_partition():
    """Active and terminal statuses cover every status exactly once."""
    assert ACTIVE_STATUSES | TERMINAL_STATUSES == set(S)
    assert not ACTIVE_STATUSES & TERMINAL_STATUSES
    assert ROOM_STATUSES <= ACTIVE_STATUSES
