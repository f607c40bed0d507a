"""Tests for the booking status state machine."""

import pytest

from roomblock.domain import booking_states as bs


class TestTransitions:
    @pytest.mark.parametrize(
        "current,target",
        [
            (bs.PENDING, bs.CONFIRMED),
            (bs.PENDING, bs.CANCELLED),
            (bs.PENDING, bs.INVALIDATED),
            (bs.CONFIRMED, bs.CANCELLED),
            (bs.CONFIRMED, bs.INVALIDATED),
        ],
    )
    def test_allowed(self, current, target):
        assert bs.can_transition(current, target)
        bs.assert_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (bs.CONFIRMED, bs.PENDING),
            (bs.CANCELLED, bs.PENDING),
            (bs.CANCELLED, bs.CONFIRMED),
            (bs.INVALIDATED, bs.CANCELLED),
            (bs.INVALIDATED, bs.CONFIRMED),
        ],
    )
    def test_rejected(self, current, target):
        assert not bs.can_transition(current, target)
        with pytest.raises(bs.InvalidTransitionError) as exc_info:
            bs.assert_transition(current, target)
        assert exc_info.value.current == current
        assert exc_info.value.target == target

    def test_unknown_status_is_value_error(self):
        with pytest.raises(ValueError, match="Unknown booking status"):
            bs.assert_transition(bs.PENDING, "checked_in")


class TestIsActive:
    def test_pending_and_confirmed_are_active(self):
        assert bs.is_active(bs.PENDING)
        assert bs.is_active(bs.CONFIRMED)

    def test_terminal_states_are_inactive(self):
        assert not bs.is_active(bs.CANCELLED)
        assert not bs.is_active(bs.INVALIDATED)
