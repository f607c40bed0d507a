"""Hard deletes of hotels and room types with everything hanging off them.

Deletion order inside one transaction:
modification log → bookings → inventory rows → event links → room types → hotel.
Any failure rolls the whole cascade back. Email notification rows are audit
history and survive (their booking_id is not a foreign key).
"""

from psycopg2.extensions import cursor as PgCursor

from roomblock.infra.db import txn
from roomblock.observability.logging import get_logger

logger = get_logger(__name__)


class HotelNotFoundError(Exception):
    """Raised when the hotel does not exist."""

    pass


class RoomTypeNotInHotelError(Exception):
    """Raised when the room type does not exist under the given hotel."""

    pass


def _delete_room_types(cur: PgCursor, room_type_ids: list[int]) -> dict:
    counts = {"booking_modifications": 0, "bookings": 0, "room_availability": 0, "room_types": 0}
    if not room_type_ids:
        return counts

    cur.execute(
        """
        DELETE FROM booking_modifications
        WHERE booking_id IN (SELECT booking_id FROM bookings WHERE room_type_id = ANY(%s))
        """,
        (room_type_ids,),
    )
    counts["booking_modifications"] = cur.rowcount

    cur.execute("DELETE FROM bookings WHERE room_type_id = ANY(%s)", (room_type_ids,))
    counts["bookings"] = cur.rowcount

    cur.execute("DELETE FROM room_availability WHERE room_type_id = ANY(%s)", (room_type_ids,))
    counts["room_availability"] = cur.rowcount

    cur.execute("DELETE FROM event_room_types WHERE room_type_id = ANY(%s)", (room_type_ids,))

    cur.execute("DELETE FROM room_types WHERE room_type_id = ANY(%s)", (room_type_ids,))
    counts["room_types"] = cur.rowcount
    return counts


def delete_room_type(hotel_id: int, room_type_id: int) -> dict:
    """Delete a room type with its bookings and inventory rows.

    Raises:
        RoomTypeNotInHotelError: No such room type under the hotel.
    """
    with txn() as cur:
        cur.execute(
            "SELECT 1 FROM room_types WHERE room_type_id = %s AND hotel_id = %s FOR UPDATE",
            (room_type_id, hotel_id),
        )
        if cur.fetchone() is None:
            raise RoomTypeNotInHotelError(
                f"Room type {room_type_id} not found in hotel {hotel_id}"
            )
        counts = _delete_room_types(cur, [room_type_id])

    logger.info(
        "room type deleted",
        extra={"extra_fields": {"hotel_id": hotel_id, "room_type_id": room_type_id, **counts}},
    )
    return counts


def delete_hotel(hotel_id: int) -> dict:
    """Delete a hotel, its room types, their bookings and inventory, and event links.

    Raises:
        HotelNotFoundError: Unknown hotel.
    """
    with txn() as cur:
        cur.execute("SELECT 1 FROM hotels WHERE hotel_id = %s FOR UPDATE", (hotel_id,))
        if cur.fetchone() is None:
            raise HotelNotFoundError(f"Hotel {hotel_id} not found")

        cur.execute(
            "SELECT room_type_id FROM room_types WHERE hotel_id = %s FOR UPDATE",
            (hotel_id,),
        )
        room_type_ids = [row[0] for row in cur.fetchall()]
        counts = _delete_room_types(cur, room_type_ids)

        cur.execute("DELETE FROM event_hotels WHERE hotel_id = %s", (hotel_id,))
        cur.execute("DELETE FROM hotels WHERE hotel_id = %s", (hotel_id,))

    logger.info(
        "hotel deleted",
        extra={"extra_fields": {"hotel_id": hotel_id, **counts}},
    )
    return counts


def get_deletion_impact(hotel_id: int) -> dict:
    """Counts of what delete_hotel would remove, for the confirmation dialog."""
    with txn() as cur:
        cur.execute("SELECT name FROM hotels WHERE hotel_id = %s", (hotel_id,))
        row = cur.fetchone()
        if row is None:
            raise HotelNotFoundError(f"Hotel {hotel_id} not found")
        hotel_name = row[0]

        cur.execute(
            """
            SELECT
                (SELECT COUNT(*) FROM room_types WHERE hotel_id = %s),
                (SELECT COUNT(*) FROM bookings b
                   JOIN room_types rt ON rt.room_type_id = b.room_type_id
                  WHERE rt.hotel_id = %s),
                (SELECT COUNT(*) FROM bookings b
                   JOIN room_types rt ON rt.room_type_id = b.room_type_id
                  WHERE rt.hotel_id = %s
                    AND b.status NOT IN ('cancelled', 'invalidated')),
                (SELECT COUNT(*) FROM event_hotels WHERE hotel_id = %s)
            """,
            (hotel_id, hotel_id, hotel_id, hotel_id),
        )
        room_types, total_bookings, active_bookings, events = cur.fetchone()

    return {
        "hotel_id": hotel_id,
        "hotel_name": hotel_name,
        "room_types": room_types,
        "bookings": total_bookings,
        "active_bookings": active_bookings,
        "events": events,
    }
