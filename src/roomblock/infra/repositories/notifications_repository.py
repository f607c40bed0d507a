"""Notifications repository - email audit log, reference points, guest lookups.

Uses raw SQL with psycopg2 (no ORM). email_notifications is append-only.
"""

from datetime import date, datetime, timedelta

from psycopg2.extensions import cursor as PgCursor

_NOTIFICATION_COLUMNS = """
    id, guest_id, event_id, booking_id, notification_type, sent_at,
    recipient_email, subject, status, status_id, error_message
"""

_GUEST_BOOKING_SELECT = """
SELECT b.booking_id, b.event_id, b.person_id,
       p.first_name, p.last_name, p.email,
       b.room_type_id, rt.name, h.hotel_id, h.name,
       b.check_in_date, b.check_out_date, b.total_cost, b.status,
       b.modification_type, b.modification_date, b.created_at, b.updated_at
FROM bookings b
JOIN people p ON p.person_id = b.person_id
JOIN room_types rt ON rt.room_type_id = b.room_type_id
JOIN hotels h ON h.hotel_id = rt.hotel_id
"""


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


def notification_row_to_dict(row: tuple) -> dict:
    return {
        "id": row[0],
        "guest_id": row[1],
        "event_id": row[2],
        "booking_id": row[3],
        "notification_type": row[4],
        "sent_at": _iso(row[5]),
        "recipient_email": row[6],
        "subject": row[7],
        "status": row[8],
        "status_id": row[9],
        "error_message": row[10],
    }


def guest_booking_row_to_dict(row: tuple) -> dict:
    return {
        "booking_id": row[0],
        "event_id": row[1],
        "person_id": row[2],
        "first_name": row[3],
        "last_name": row[4],
        "email": row[5],
        "room_type_id": row[6],
        "room_type_name": row[7],
        "hotel_id": row[8],
        "hotel_name": row[9],
        "check_in_date": _iso(row[10]),
        "check_out_date": _iso(row[11]),
        "total_cost": str(row[12]) if row[12] is not None else None,
        "status": row[13],
        "modification_type": row[14],
        "modification_date": _iso(row[15]),
        "created_at": _iso(row[16]),
        "updated_at": _iso(row[17]),
    }


# ── Email notifications ───────────────────────────────────────────────────────


def insert_email_notification(
    cur: PgCursor,
    *,
    event_id: int,
    notification_type: str,
    status: str,
    guest_id: int | None = None,
    booking_id: int | None = None,
    recipient_email: str | None = None,
    subject: str | None = None,
    status_id: str | None = None,
    error_message: str | None = None,
    sent_at: datetime | None = None,
) -> dict:
    """Append one row to email_notifications and return it.

    sent_at defaults to now() when not given.
    """
    cur.execute(
        f"""
        INSERT INTO email_notifications (
            guest_id, event_id, booking_id, notification_type,
            recipient_email, subject, status, status_id, error_message, sent_at
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, COALESCE(%s, now()))
        RETURNING {_NOTIFICATION_COLUMNS}
        """,
        (
            guest_id,
            event_id,
            booking_id,
            notification_type,
            recipient_email,
            subject,
            status,
            status_id,
            error_message,
            sent_at,
        ),
    )
    return notification_row_to_dict(cur.fetchone())


def fetch_last_notification(cur: PgCursor, event_id: int, guest_id: int | None) -> dict | None:
    """Most recent notification for a guest, or the most recent bulk marker.

    guest_id=None matches guest-less rows and any BULK row.
    """
    if guest_id is None:
        cur.execute(
            f"""
            SELECT {_NOTIFICATION_COLUMNS}
            FROM email_notifications
            WHERE event_id = %s
              AND (guest_id IS NULL OR notification_type = 'BULK')
            ORDER BY sent_at DESC, id DESC
            LIMIT 1
            """,
            (event_id,),
        )
    else:
        cur.execute(
            f"""
            SELECT {_NOTIFICATION_COLUMNS}
            FROM email_notifications
            WHERE event_id = %s AND guest_id = %s
            ORDER BY sent_at DESC, id DESC
            LIMIT 1
            """,
            (event_id, guest_id),
        )
    row = cur.fetchone()
    return notification_row_to_dict(row) if row else None


def list_notifications(
    cur: PgCursor,
    *,
    event_id: int | None = None,
    notification_type: str | None = None,
    status: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[dict], int]:
    """Filtered, newest-first page of the notification log.

    end_date is inclusive of the whole day.

    Returns:
        (rows, total matching rows)
    """
    conditions: list[str] = []
    params: list = []
    if event_id is not None:
        conditions.append("en.event_id = %s")
        params.append(event_id)
    if notification_type is not None:
        conditions.append("en.notification_type = %s")
        params.append(notification_type)
    if status is not None:
        conditions.append("en.status = %s")
        params.append(status)
    if start_date is not None:
        conditions.append("en.sent_at >= %s")
        params.append(start_date)
    if end_date is not None:
        conditions.append("en.sent_at < %s")
        params.append(end_date + timedelta(days=1))

    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

    cur.execute(f"SELECT COUNT(*) FROM email_notifications en {where}", params)  # noqa: S608
    total = cur.fetchone()[0]

    cur.execute(
        f"""
        SELECT en.id, en.guest_id, en.event_id, en.booking_id, en.notification_type,
               en.sent_at, en.recipient_email, en.subject, en.status, en.status_id,
               en.error_message, p.first_name, p.last_name, e.name
        FROM email_notifications en
        LEFT JOIN people p ON p.person_id = en.guest_id
        LEFT JOIN events e ON e.event_id = en.event_id
        {where}
        ORDER BY en.sent_at DESC, en.id DESC
        LIMIT %s OFFSET %s
        """,  # noqa: S608 - WHERE built from fixed column names only
        [*params, limit, (page - 1) * limit],
    )
    rows = []
    for r in cur.fetchall():
        item = notification_row_to_dict(r[:11])
        item["first_name"] = r[11]
        item["last_name"] = r[12]
        item["event_name"] = r[13]
        rows.append(item)
    return rows, total


# ── Reference points ──────────────────────────────────────────────────────────


def fetch_reference_point(cur: PgCursor, event_id: int) -> tuple[datetime, int] | None:
    """(reference_timestamp, version) for the event, if recorded."""
    cur.execute(
        """
        SELECT reference_timestamp, version
        FROM notification_reference_points
        WHERE event_id = %s
        """,
        (event_id,),
    )
    row = cur.fetchone()
    return (row[0], row[1]) if row else None


def advance_reference_point(
    cur: PgCursor,
    event_id: int,
    expected_version: int | None,
) -> tuple[datetime, int] | None:
    """Compare-and-swap the reference point to now().

    expected_version=None means no record was seen; the insert only succeeds
    if none exists yet.

    Returns:
        (reference_timestamp, version) on success, None when another writer
        moved the reference point first.
    """
    if expected_version is None:
        cur.execute(
            """
            INSERT INTO notification_reference_points (event_id, reference_timestamp, version)
            VALUES (%s, now(), 1)
            ON CONFLICT (event_id) DO NOTHING
            RETURNING reference_timestamp, version
            """,
            (event_id,),
        )
    else:
        cur.execute(
            """
            UPDATE notification_reference_points
            SET reference_timestamp = now(),
                version = version + 1,
                updated_at = now()
            WHERE event_id = %s AND version = %s
            RETURNING reference_timestamp, version
            """,
            (event_id, expected_version),
        )
    row = cur.fetchone()
    return (row[0], row[1]) if row else None


def raise_reference_point(
    cur: PgCursor,
    event_id: int,
    at: datetime | None,
) -> tuple[datetime, int]:
    """Move the reference point forward to `at` (now() when None), never back.

    Creates the record when the event has none.

    Returns:
        (reference_timestamp, version) after the write.
    """
    cur.execute(
        """
        INSERT INTO notification_reference_points (event_id, reference_timestamp, version)
        VALUES (%s, COALESCE(%s, now()), 1)
        ON CONFLICT (event_id) DO UPDATE
        SET reference_timestamp = GREATEST(
                notification_reference_points.reference_timestamp,
                EXCLUDED.reference_timestamp
            ),
            version = notification_reference_points.version + 1,
            updated_at = now()
        RETURNING reference_timestamp, version
        """,
        (event_id, at),
    )
    row = cur.fetchone()
    return (row[0], row[1])


def fetch_event_start_date(cur: PgCursor, event_id: int) -> date | None:
    cur.execute("SELECT start_date FROM events WHERE event_id = %s", (event_id,))
    row = cur.fetchone()
    return row[0] if row else None


# ── Guest bookings ────────────────────────────────────────────────────────────


def fetch_changed_bookings(cur: PgCursor, event_id: int, since: datetime) -> list[dict]:
    """Notifiable bookings created, updated or modified strictly after since."""
    cur.execute(
        _GUEST_BOOKING_SELECT
        + """
        WHERE b.event_id = %s
          AND b.status IN ('confirmed', 'pending')
          AND (
              b.updated_at > %s
              OR b.created_at > %s
              OR b.modification_date > %s
          )
        ORDER BY b.updated_at DESC
        """,
        (event_id, since, since, since),
    )
    return [guest_booking_row_to_dict(r) for r in cur.fetchall()]


def fetch_notifiable_bookings(cur: PgCursor, event_id: int) -> list[dict]:
    """Every pending or confirmed booking of the event."""
    cur.execute(
        _GUEST_BOOKING_SELECT
        + """
        WHERE b.event_id = %s
          AND b.status IN ('confirmed', 'pending')
        ORDER BY p.last_name, p.first_name, b.booking_id
        """,
        (event_id,),
    )
    return [guest_booking_row_to_dict(r) for r in cur.fetchall()]


def fetch_guest_booking(cur: PgCursor, booking_id: int) -> dict | None:
    cur.execute(_GUEST_BOOKING_SELECT + "WHERE b.booking_id = %s", (booking_id,))
    row = cur.fetchone()
    return guest_booking_row_to_dict(row) if row else None
