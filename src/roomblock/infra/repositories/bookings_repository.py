"""Bookings repository - persistence for bookings and their modification log.

Uses raw SQL with psycopg2 (no ORM).
"""

import json
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from psycopg2.extensions import cursor as PgCursor

from roomblock.infra.db import lock_row

_BOOKING_COLUMNS = """
    booking_id, event_id, person_id, room_type_id,
    check_in_date, check_out_date, total_cost, payable,
    status, modification_type, modification_date,
    created_at, updated_at
"""


@dataclass(frozen=True)
class BookingRecord:
    booking_id: int
    event_id: int
    person_id: int
    room_type_id: int
    check_in_date: date
    check_out_date: date
    total_cost: Decimal
    payable: bool
    status: str
    modification_type: str | None
    modification_date: datetime | None
    created_at: datetime
    updated_at: datetime

    def stay_snapshot(self) -> dict:
        """JSON-safe view of the fields a modification can change."""
        return {
            "room_type_id": self.room_type_id,
            "check_in_date": self.check_in_date.isoformat(),
            "check_out_date": self.check_out_date.isoformat(),
            "total_cost": str(self.total_cost),
            "status": self.status,
        }


def _to_record(row: tuple | None) -> BookingRecord | None:
    if row is None:
        return None
    return BookingRecord(
        booking_id=row[0],
        event_id=row[1],
        person_id=row[2],
        room_type_id=row[3],
        check_in_date=row[4],
        check_out_date=row[5],
        total_cost=Decimal(row[6]),
        payable=row[7],
        status=row[8],
        modification_type=row[9],
        modification_date=row[10],
        created_at=row[11],
        updated_at=row[12],
    )


def fetch_booking(cur: PgCursor, booking_id: int) -> BookingRecord | None:
    cur.execute(f"SELECT {_BOOKING_COLUMNS} FROM bookings WHERE booking_id = %s", (booking_id,))
    return _to_record(cur.fetchone())


def lock_booking(cur: PgCursor, booking_id: int) -> BookingRecord | None:
    return _to_record(
        lock_row(cur, f"SELECT {_BOOKING_COLUMNS} FROM bookings WHERE booking_id = %s", (booking_id,))
    )


def person_exists(cur: PgCursor, person_id: int) -> bool:
    cur.execute("SELECT 1 FROM people WHERE person_id = %s", (person_id,))
    return cur.fetchone() is not None


def hotel_linked_to_event(cur: PgCursor, event_id: int, hotel_id: int) -> bool:
    cur.execute(
        "SELECT 1 FROM event_hotels WHERE event_id = %s AND hotel_id = %s",
        (event_id, hotel_id),
    )
    return cur.fetchone() is not None


def insert_booking(
    cur: PgCursor,
    *,
    event_id: int,
    person_id: int,
    room_type_id: int,
    check_in: date,
    check_out: date,
    total_cost: Decimal,
    payable: bool,
    status: str = "pending",
) -> int:
    """Insert a booking and return its booking_id."""
    cur.execute(
        """
        INSERT INTO bookings (
            event_id, person_id, room_type_id,
            check_in_date, check_out_date, total_cost, payable, status
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING booking_id
        """,
        (event_id, person_id, room_type_id, check_in, check_out, total_cost, payable, status),
    )
    return cur.fetchone()[0]


def update_stay(
    cur: PgCursor,
    booking_id: int,
    *,
    room_type_id: int,
    check_in: date,
    check_out: date,
    total_cost: Decimal,
    modification_type: str | None,
) -> None:
    """Overwrite the stay fields.

    modification_type/modification_date are only stamped when a change type
    is given; otherwise the previous marker is kept.
    """
    cur.execute(
        """
        UPDATE bookings
        SET room_type_id = %s,
            check_in_date = %s,
            check_out_date = %s,
            total_cost = %s,
            modification_type = COALESCE(%s, modification_type),
            modification_date = CASE WHEN %s IS NOT NULL THEN now() ELSE modification_date END,
            updated_at = now()
        WHERE booking_id = %s
        """,
        (room_type_id, check_in, check_out, total_cost, modification_type, modification_type, booking_id),
    )


def update_status(cur: PgCursor, booking_id: int, status: str) -> None:
    """Set a new status; cancellation also stamps the modification marker."""
    cur.execute(
        """
        UPDATE bookings
        SET status = %s,
            modification_type = CASE WHEN %s = 'cancelled' THEN 'cancelled' ELSE modification_type END,
            modification_date = CASE WHEN %s = 'cancelled' THEN now() ELSE modification_date END,
            updated_at = now()
        WHERE booking_id = %s
        """,
        (status, status, status, booking_id),
    )


def cancel_active_by_company(cur: PgCursor, event_id: int, company: str) -> list[int]:
    """Cancel every active booking of the event whose guest works for company.

    Returns:
        booking_ids that were cancelled.
    """
    cur.execute(
        """
        UPDATE bookings b
        SET status = 'cancelled',
            modification_type = 'cancelled',
            modification_date = now(),
            updated_at = now()
        FROM people_details pd
        WHERE b.person_id = pd.person_id
          AND b.event_id = %s
          AND pd.company = %s
          AND b.status NOT IN ('cancelled', 'invalidated')
        RETURNING b.booking_id
        """,
        (event_id, company),
    )
    return [row[0] for row in cur.fetchall()]


def fetch_active_for_room_type(cur: PgCursor, room_type_id: int) -> list[tuple[int, date, date, Decimal]]:
    """Active bookings of a room type as (booking_id, check_in, check_out, total_cost).

    The rows stay locked until the transaction ends.
    """
    cur.execute(
        """
        SELECT booking_id, check_in_date, check_out_date, total_cost
        FROM bookings
        WHERE room_type_id = %s
          AND status NOT IN ('cancelled', 'invalidated')
        ORDER BY booking_id
        FOR UPDATE
        """,
        (room_type_id,),
    )
    return [(r[0], r[1], r[2], Decimal(r[3])) for r in cur.fetchall()]


def update_total_cost(cur: PgCursor, booking_id: int, total_cost: Decimal) -> None:
    cur.execute(
        "UPDATE bookings SET total_cost = %s, updated_at = now() WHERE booking_id = %s",
        (total_cost, booking_id),
    )


def append_modification(
    cur: PgCursor,
    booking_id: int,
    change_type: str,
    *,
    previous: dict | None = None,
    current: dict | None = None,
) -> None:
    """Append one entry to the booking_modifications log (never updated)."""
    cur.execute(
        """
        INSERT INTO booking_modifications (booking_id, change_type, previous, current)
        VALUES (%s, %s, %s, %s)
        """,
        (
            booking_id,
            change_type,
            json.dumps(previous) if previous is not None else None,
            json.dumps(current) if current is not None else None,
        ),
    )


def fetch_modifications(cur: PgCursor, booking_id: int) -> list[dict]:
    cur.execute(
        """
        SELECT id, change_type, previous, current, created_at
        FROM booking_modifications
        WHERE booking_id = %s
        ORDER BY created_at, id
        """,
        (booking_id,),
    )
    return [
        {
            "id": r[0],
            "change_type": r[1],
            "previous": r[2],
            "current": r[3],
            "created_at": r[4].isoformat() if r[4] else None,
        }
        for r in cur.fetchall()
    ]


def fetch_summary(cur: PgCursor, booking_id: int) -> dict | None:
    """Booking with hotel and room type names for API responses."""
    cur.execute(
        """
        SELECT b.booking_id, b.event_id, b.person_id, b.room_type_id,
               b.check_in_date, b.check_out_date, b.total_cost, b.payable,
               b.status, b.modification_type, b.modification_date,
               b.created_at, b.updated_at,
               h.hotel_id, h.name, rt.name
        FROM bookings b
        JOIN room_types rt ON rt.room_type_id = b.room_type_id
        JOIN hotels h ON h.hotel_id = rt.hotel_id
        WHERE b.booking_id = %s
        """,
        (booking_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    record = _to_record(row[:13])
    return {
        "booking_id": record.booking_id,
        "event_id": record.event_id,
        "person_id": record.person_id,
        "room_type_id": record.room_type_id,
        "check_in_date": record.check_in_date.isoformat(),
        "check_out_date": record.check_out_date.isoformat(),
        "total_cost": str(record.total_cost),
        "payable": record.payable,
        "status": record.status,
        "modification_type": record.modification_type,
        "modification_date": record.modification_date.isoformat() if record.modification_date else None,
        "created_at": record.created_at.isoformat() if record.created_at else None,
        "updated_at": record.updated_at.isoformat() if record.updated_at else None,
        "hotel_id": row[13],
        "hotel_name": row[14],
        "room_type_name": row[15],
    }
