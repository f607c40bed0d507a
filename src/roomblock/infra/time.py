"""Time utilities for consistent timestamp handling."""

from datetime import date, datetime, time, timezone


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def start_of_day_utc(day: date) -> datetime:
    """Midnight UTC of a calendar date, used when a date stands in for a timestamp."""
    return datetime.combine(day, time.min, tzinfo=timezone.utc)
