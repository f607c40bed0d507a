"""Booking status state machine.

    pending ──► confirmed ──► cancelled
       │            │
       │            └───────► invalidated
       ├──────────────────────► cancelled
       └──────────────────────► invalidated

cancelled and invalidated are terminal. Only active bookings (not cancelled,
not invalidated) consume inventory or may be modified.
"""

from __future__ import annotations

PENDING = "pending"
CONFIRMED = "confirmed"
CANCELLED = "cancelled"
INVALIDATED = "invalidated"

STATUSES = (PENDING, CONFIRMED, CANCELLED, INVALIDATED)
INACTIVE_STATUSES = (CANCELLED, INVALIDATED)
NOTIFIABLE_STATUSES = (PENDING, CONFIRMED)

TRANSITIONS: dict[str, frozenset[str]] = {
    PENDING: frozenset({CONFIRMED, CANCELLED, INVALIDATED}),
    CONFIRMED: frozenset({CANCELLED, INVALIDATED}),
    CANCELLED: frozenset(),
    INVALIDATED: frozenset(),
}


class InvalidTransitionError(Exception):
    """Raised when a status change is not in the transition table."""

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Cannot change booking status from '{current}' to '{target}'")


def is_active(status: str) -> bool:
    return status not in INACTIVE_STATUSES


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def assert_transition(current: str, target: str) -> None:
    if target not in STATUSES:
        raise ValueError(f"Unknown booking status: {target}")
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)
