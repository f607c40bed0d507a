"""Hotel and room type catalog writes that touch inventory.

Creating a room type seeds default inventory rows for the configured horizon.
Shrinking total_rooms caps every future inventory row at the new capacity.
"""

from datetime import date
from decimal import Decimal

from roomblock.domain.availability import seed_inventory_horizon
from roomblock.domain.cascade import HotelNotFoundError, RoomTypeNotInHotelError
from roomblock.domain.dates import ValidationError
from roomblock.domain.money import format_money, to_money
from roomblock.infra.db import txn
from roomblock.infra.repositories import inventory_repository as inventory
from roomblock.observability.logging import get_logger

logger = get_logger(__name__)

HOTEL_CATEGORIES = ("VIP", "Very Good", "Good")


def validate_room_type_fields(total_rooms: int | None, base_price: Decimal | None) -> None:
    if total_rooms is not None and total_rooms <= 0:
        raise ValidationError("Total rooms must be greater than 0")
    if base_price is not None and base_price <= 0:
        raise ValidationError("Base price per night must be greater than 0")


def _room_type_row_to_dict(row: tuple) -> dict:
    return {
        "room_type_id": row[0],
        "hotel_id": row[1],
        "name": row[2],
        "description": row[3],
        "total_rooms": row[4],
        "base_price_per_night": format_money(row[5]),
        "created_at": row[6].isoformat() if hasattr(row[6], "isoformat") else str(row[6]),
        "updated_at": row[7].isoformat() if hasattr(row[7], "isoformat") else str(row[7]),
    }


_ROOM_TYPE_RETURNING = """
RETURNING room_type_id, hotel_id, name, description, total_rooms,
          base_price_per_night, created_at, updated_at
"""


def create_room_type(
    hotel_id: int,
    *,
    name: str,
    description: str | None,
    total_rooms: int,
    base_price_per_night: Decimal,
    seed_from: date | None = None,
) -> dict:
    """Create a room type and seed its inventory horizon in one transaction.

    Raises:
        ValidationError: Non-positive capacity or price.
        HotelNotFoundError: Unknown hotel.
    """
    base_price = to_money(base_price_per_night)
    validate_room_type_fields(total_rooms, base_price)

    with txn() as cur:
        cur.execute("SELECT 1 FROM hotels WHERE hotel_id = %s", (hotel_id,))
        if cur.fetchone() is None:
            raise HotelNotFoundError(f"Hotel {hotel_id} not found")

        cur.execute(
            """
            INSERT INTO room_types (hotel_id, name, description, total_rooms, base_price_per_night)
            VALUES (%s, %s, %s, %s, %s)
            """
            + _ROOM_TYPE_RETURNING,
            (hotel_id, name, description, total_rooms, base_price),
        )
        row = cur.fetchone()
        room_type = inventory.RoomTypeRecord(
            room_type_id=row[0],
            hotel_id=hotel_id,
            name=name,
            total_rooms=total_rooms,
            base_price_per_night=base_price,
        )
        if seed_from is None:
            cur.execute("SELECT CURRENT_DATE")
            seed_from = cur.fetchone()[0]
        seeded = seed_inventory_horizon(cur, room_type, seed_from)

    logger.info(
        "room type created",
        extra={
            "extra_fields": {
                "hotel_id": hotel_id,
                "room_type_id": room_type.room_type_id,
                "seeded_days": seeded,
            }
        },
    )
    return _room_type_row_to_dict(row)


def update_room_type(
    hotel_id: int,
    room_type_id: int,
    *,
    name: str | None = None,
    description: str | None = None,
    total_rooms: int | None = None,
    base_price_per_night: Decimal | None = None,
) -> dict:
    """Partially update a room type.

    A lower total_rooms clamps future inventory rows to the new capacity
    within the same transaction. Existing bookings are left untouched.

    Raises:
        ValidationError: No fields, or non-positive capacity or price.
        RoomTypeNotInHotelError: No such room type under the hotel.
    """
    base_price = to_money(base_price_per_night) if base_price_per_night is not None else None
    validate_room_type_fields(total_rooms, base_price)

    sets: list[str] = ["updated_at = now()"]
    params: list = []
    if name is not None:
        sets.append("name = %s")
        params.append(name)
    if description is not None:
        sets.append("description = %s")
        params.append(description)
    if total_rooms is not None:
        sets.append("total_rooms = %s")
        params.append(total_rooms)
    if base_price is not None:
        sets.append("base_price_per_night = %s")
        params.append(base_price)
    if len(sets) == 1:
        raise ValidationError("No fields to update")

    params.extend([room_type_id, hotel_id])

    with txn() as cur:
        current = inventory.lock_room_type(cur, room_type_id)
        if current is None or current.hotel_id != hotel_id:
            raise RoomTypeNotInHotelError(
                f"Room type {room_type_id} not found in hotel {hotel_id}"
            )

        cur.execute(
            f"""
            UPDATE room_types
            SET {", ".join(sets)}
            WHERE room_type_id = %s AND hotel_id = %s
            """  # noqa: S608 - SET clause built from whitelisted column names only
            + _ROOM_TYPE_RETURNING,
            params,
        )
        row = cur.fetchone()

        clamped = 0
        if total_rooms is not None and total_rooms < current.total_rooms:
            clamped = inventory.clamp_future_overrides(cur, room_type_id, total_rooms)

    if clamped:
        logger.info(
            "future inventory clamped",
            extra={
                "extra_fields": {
                    "room_type_id": room_type_id,
                    "old_total_rooms": current.total_rooms,
                    "new_total_rooms": total_rooms,
                    "rows": clamped,
                }
            },
        )
    return _room_type_row_to_dict(row)
