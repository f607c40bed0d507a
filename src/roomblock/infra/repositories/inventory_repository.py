"""Inventory repository - room types and per-date override rows.

Uses raw SQL with psycopg2 (no ORM).
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from psycopg2.extensions import cursor as PgCursor

from roomblock.infra.db import lock_row

ACTIVE_EXCLUDED_STATUSES = ("cancelled", "invalidated")


def category_rank_sql(column: str) -> str:
    """ORDER BY expression ranking hotel categories VIP, Very Good, Good."""
    return f"CASE {column} WHEN 'VIP' THEN 0 WHEN 'Very Good' THEN 1 WHEN 'Good' THEN 2 ELSE 3 END"


@dataclass(frozen=True)
class RoomTypeRecord:
    room_type_id: int
    hotel_id: int
    name: str
    total_rooms: int
    base_price_per_night: Decimal


_ROOM_TYPE_SQL = """
SELECT room_type_id, hotel_id, name, total_rooms, base_price_per_night
FROM room_types
WHERE room_type_id = %s
"""


def _to_record(row: tuple | None) -> RoomTypeRecord | None:
    if row is None:
        return None
    return RoomTypeRecord(
        room_type_id=row[0],
        hotel_id=row[1],
        name=row[2],
        total_rooms=row[3],
        base_price_per_night=Decimal(row[4]),
    )


def fetch_room_type(cur: PgCursor, room_type_id: int) -> RoomTypeRecord | None:
    cur.execute(_ROOM_TYPE_SQL, (room_type_id,))
    return _to_record(cur.fetchone())


def lock_room_type(cur: PgCursor, room_type_id: int) -> RoomTypeRecord | None:
    """Fetch a room type and hold its row lock until the transaction ends.

    Booking writes for the same room type serialize on this lock, which
    closes the read-availability-then-insert race.
    """
    return _to_record(lock_row(cur, _ROOM_TYPE_SQL, (room_type_id,)))


def fetch_overrides(
    cur: PgCursor,
    room_type_id: int,
    start: date | None = None,
    end: date | None = None,
) -> dict[date, tuple[int, Decimal]]:
    """Override rows keyed by date, optionally limited to [start, end].

    Returns:
        {date: (available_rooms, price_per_night)}
    """
    cur.execute(
        """
        SELECT date, available_rooms, price_per_night
        FROM room_availability
        WHERE room_type_id = %s
          AND (%s::date IS NULL OR date >= %s::date)
          AND (%s::date IS NULL OR date <= %s::date)
        ORDER BY date
        """,
        (room_type_id, start, start, end, end),
    )
    return {row[0]: (row[1], Decimal(row[2])) for row in cur.fetchall()}


def fetch_active_booking_spans(
    cur: PgCursor,
    room_type_ids: list[int],
    start: date,
    end_exclusive: date,
    exclude_booking_id: int | None = None,
) -> list[tuple[int, date, date]]:
    """Active bookings overlapping [start, end_exclusive).

    Overlap: check_in_date < end_exclusive AND check_out_date > start.

    Returns:
        List of (room_type_id, check_in_date, check_out_date).
    """
    if not room_type_ids:
        return []
    cur.execute(
        """
        SELECT room_type_id, check_in_date, check_out_date
        FROM bookings
        WHERE room_type_id = ANY(%s)
          AND status NOT IN %s
          AND check_in_date < %s
          AND check_out_date > %s
          AND (%s::integer IS NULL OR booking_id <> %s::integer)
        """,
        (
            list(room_type_ids),
            ACTIVE_EXCLUDED_STATUSES,
            end_exclusive,
            start,
            exclude_booking_id,
            exclude_booking_id,
        ),
    )
    return [(r[0], r[1], r[2]) for r in cur.fetchall()]


def upsert_override(
    cur: PgCursor,
    *,
    room_type_id: int,
    day: date,
    available_rooms: int,
    price_per_night: Decimal,
) -> tuple[date, int, Decimal]:
    """Insert or replace the override row for (room_type_id, day)."""
    cur.execute(
        """
        INSERT INTO room_availability (room_type_id, date, available_rooms, price_per_night)
        VALUES (%s, %s, %s, %s)
        ON CONFLICT (room_type_id, date)
        DO UPDATE SET
            available_rooms = EXCLUDED.available_rooms,
            price_per_night = EXCLUDED.price_per_night
        RETURNING date, available_rooms, price_per_night
        """,
        (room_type_id, day, available_rooms, price_per_night),
    )
    row = cur.fetchone()
    return (row[0], row[1], Decimal(row[2]))


def fill_override_range(
    cur: PgCursor,
    *,
    room_type_id: int,
    start: date,
    end: date,
    available_rooms: int,
    price_per_night: Decimal,
) -> int:
    """Write the same override for every day in [start, end]. Returns row count."""
    cur.execute(
        """
        INSERT INTO room_availability (room_type_id, date, available_rooms, price_per_night)
        SELECT %s, d::date, %s, %s
        FROM generate_series(%s::date, %s::date, '1 day'::interval) AS d
        ON CONFLICT (room_type_id, date)
        DO UPDATE SET
            available_rooms = EXCLUDED.available_rooms,
            price_per_night = EXCLUDED.price_per_night
        """,
        (room_type_id, available_rooms, price_per_night, start, end),
    )
    return cur.rowcount


def clamp_future_overrides(cur: PgCursor, room_type_id: int, total_rooms: int) -> int:
    """Cap future override rows at a reduced capacity. Returns rows touched."""
    cur.execute(
        """
        UPDATE room_availability
        SET available_rooms = LEAST(available_rooms, %s)
        WHERE room_type_id = %s
          AND date >= CURRENT_DATE
          AND available_rooms > %s
        """,
        (total_rooms, room_type_id, total_rooms),
    )
    return cur.rowcount
