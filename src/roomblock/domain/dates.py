"""Date-range helpers shared by availability, pricing and bookings.

Stays use an exclusive end: a guest checking in on the 1st and out on the
4th occupies the nights of the 1st, 2nd and 3rd. Calendar queries use an
inclusive end.
"""

from datetime import date, timedelta
from typing import Iterator

MAX_RANGE_DAYS = 366


class ValidationError(Exception):
    """Raised when caller input is rejected before any mutation."""

    pass


def iter_nights(check_in: date, check_out: date) -> Iterator[date]:
    """Yield every night consumed by a stay, check-out day excluded."""
    current = check_in
    while current < check_out:
        yield current
        current += timedelta(days=1)


def iter_days(start: date, end: date) -> Iterator[date]:
    """Yield every calendar day from start to end, both included."""
    return iter_nights(start, end + timedelta(days=1))


def validate_stay(check_in: date, check_out: date) -> None:
    if check_in >= check_out:
        raise ValidationError("Check-out date must be after check-in date")


def validate_range(start: date, end: date, max_days: int = MAX_RANGE_DAYS) -> None:
    """Reject inverted or oversized inclusive ranges."""
    if end < start:
        raise ValidationError("end_date must be >= start_date")
    if (end - start).days + 1 > max_days:
        raise ValidationError(f"Date range cannot exceed {max_days} days")
