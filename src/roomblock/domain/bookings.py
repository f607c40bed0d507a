"""Booking lifecycle - create, modify, cancel and status transitions.

Every write runs in a single transaction. Creation and modification lock the
target room type row first, recompute nightly net availability and refuse the
stay when any night is full, so two concurrent bookings for the last room
cannot both commit. Staff may deliberately overbook with allow_overbooking.

Each mutation appends an entry to booking_modifications and keeps the
modification_type/modification_date columns current, which the notification
dispatcher uses to find changed bookings.
"""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

from psycopg2.extensions import cursor as PgCursor

from roomblock.domain import booking_states
from roomblock.domain.availability import (
    RoomTypeNotFoundError,
    assert_capacity,
    compute_total_cost,
)
from roomblock.domain.dates import ValidationError, validate_stay
from roomblock.domain.money import to_money
from roomblock.infra.db import txn
from roomblock.infra.repositories import bookings_repository as bookings
from roomblock.infra.repositories import inventory_repository as inventory
from roomblock.infra.repositories.bookings_repository import BookingRecord
from roomblock.infra.repositories.inventory_repository import RoomTypeRecord
from roomblock.observability.logging import get_logger

logger = get_logger(__name__)

CHANGE_CREATED = "created"
CHANGE_DATES = "date_change"
CHANGE_ROOM = "room_change"
CHANGE_CANCELLED = "cancelled"
CHANGE_STATUS = "status_change"
CHANGE_COST = "cost_recalculated"


class BookingNotFoundError(Exception):
    """Raised when the booking does not exist."""

    pass


class PersonNotFoundError(Exception):
    """Raised when the guest referenced by a booking does not exist."""

    pass


class HotelNotInEventError(Exception):
    """Raised when the room type's hotel is not linked to the booking's event."""

    pass


class BookingNotModifiableError(Exception):
    """Raised when a cancelled or invalidated booking is edited."""

    pass


def derive_modification_type(
    current: BookingRecord,
    *,
    room_type_id: int,
    check_in: date,
    check_out: date,
) -> str | None:
    """Classify an edit. A room change wins over a date change.

    Returns None when neither the room type nor the dates changed.
    """
    if room_type_id != current.room_type_id:
        return CHANGE_ROOM
    if check_in != current.check_in_date or check_out != current.check_out_date:
        return CHANGE_DATES
    return None


def _price_stay(cur: PgCursor, room_type: RoomTypeRecord, check_in: date, check_out: date) -> Decimal:
    overrides = inventory.fetch_overrides(
        cur, room_type.room_type_id, check_in, check_out - timedelta(days=1)
    )
    return compute_total_cost(
        check_in,
        check_out,
        base_price=room_type.base_price_per_night,
        prices_by_date={day: price for day, (_, price) in overrides.items()},
    )


def _resolve_cost(
    cur: PgCursor,
    room_type: RoomTypeRecord,
    check_in: date,
    check_out: date,
    total_cost: Decimal | None,
) -> Decimal:
    if total_cost is None:
        return _price_stay(cur, room_type, check_in, check_out)
    cost = to_money(total_cost)
    if cost < 0:
        raise ValidationError("Total cost must be greater than or equal to 0")
    return cost


def _lock_room_type(cur: PgCursor, room_type_id: int) -> RoomTypeRecord:
    room_type = inventory.lock_room_type(cur, room_type_id)
    if room_type is None:
        raise RoomTypeNotFoundError(f"Room type {room_type_id} not found")
    return room_type


def _guard_capacity(
    cur: PgCursor,
    room_type: RoomTypeRecord,
    check_in: date,
    check_out: date,
    *,
    allow_overbooking: bool,
    exclude_booking_id: int | None = None,
) -> None:
    if allow_overbooking:
        logger.warning(
            "capacity check bypassed",
            extra={
                "extra_fields": {
                    "room_type_id": room_type.room_type_id,
                    "check_in": check_in.isoformat(),
                    "check_out": check_out.isoformat(),
                    "booking_id": exclude_booking_id,
                }
            },
        )
        return
    assert_capacity(cur, room_type, check_in, check_out, exclude_booking_id=exclude_booking_id)


def _require_booking(cur: PgCursor, booking_id: int) -> BookingRecord:
    booking = bookings.lock_booking(cur, booking_id)
    if booking is None:
        raise BookingNotFoundError(f"Booking {booking_id} not found")
    return booking


def _insert_new_booking(
    cur: PgCursor,
    *,
    event_id: int,
    person_id: int,
    room_type: RoomTypeRecord,
    check_in: date,
    check_out: date,
    total_cost: Decimal,
    payable: bool,
) -> int:
    booking_id = bookings.insert_booking(
        cur,
        event_id=event_id,
        person_id=person_id,
        room_type_id=room_type.room_type_id,
        check_in=check_in,
        check_out=check_out,
        total_cost=total_cost,
        payable=payable,
        status=booking_states.PENDING,
    )
    bookings.append_modification(
        cur,
        booking_id,
        CHANGE_CREATED,
        current={
            "room_type_id": room_type.room_type_id,
            "check_in_date": check_in.isoformat(),
            "check_out_date": check_out.isoformat(),
            "total_cost": str(total_cost),
            "status": booking_states.PENDING,
        },
    )
    return booking_id


def create_booking(
    *,
    event_id: int,
    person_id: int,
    room_type_id: int,
    check_in: date,
    check_out: date,
    total_cost: Decimal | None = None,
    payable: bool = True,
    allow_overbooking: bool = False,
) -> dict:
    """Create a pending booking after validating references and capacity.

    When total_cost is omitted it is priced from the current nightly rates.

    Returns:
        Booking summary including hotel_name and room_type_name.

    Raises:
        ValidationError: check_in >= check_out or negative cost.
        PersonNotFoundError: Unknown person.
        RoomTypeNotFoundError: Unknown room type.
        HotelNotInEventError: Room type's hotel not offered for the event.
        CapacityExceededError: A night of the stay has no room left.
    """
    validate_stay(check_in, check_out)

    with txn() as cur:
        if not bookings.person_exists(cur, person_id):
            raise PersonNotFoundError(f"Person {person_id} not found")

        room_type = _lock_room_type(cur, room_type_id)
        if not bookings.hotel_linked_to_event(cur, event_id, room_type.hotel_id):
            raise HotelNotInEventError(
                f"Hotel {room_type.hotel_id} is not linked to event {event_id}"
            )

        cost = _resolve_cost(cur, room_type, check_in, check_out, total_cost)
        _guard_capacity(cur, room_type, check_in, check_out, allow_overbooking=allow_overbooking)

        booking_id = _insert_new_booking(
            cur,
            event_id=event_id,
            person_id=person_id,
            room_type=room_type,
            check_in=check_in,
            check_out=check_out,
            total_cost=cost,
            payable=payable,
        )
        summary = bookings.fetch_summary(cur, booking_id)

    logger.info(
        "booking created",
        extra={
            "extra_fields": {
                "booking_id": booking_id,
                "event_id": event_id,
                "room_type_id": room_type_id,
                "nights": (check_out - check_in).days,
            }
        },
    )
    return summary


def modify_booking(
    booking_id: int,
    *,
    room_type_id: int,
    check_in: date,
    check_out: date,
    total_cost: Decimal | None = None,
    allow_overbooking: bool = False,
) -> dict:
    """Overwrite room type, dates and cost of an active booking.

    Moving the stay to a room type of another hotel cancels the booking and
    creates a fresh pending one for the same guest and event.

    Returns:
        {"hotel_changed": bool, "modification_type": str | None,
         "booking": summary, "previous_booking_id": int | None}

    Raises:
        BookingNotFoundError: Unknown booking.
        BookingNotModifiableError: Booking is cancelled or invalidated.
        ValidationError: Bad dates or cost.
        RoomTypeNotFoundError: Unknown target room type.
        CapacityExceededError: A night of the new stay has no room left.
    """
    validate_stay(check_in, check_out)

    with txn() as cur:
        current = _require_booking(cur, booking_id)
        if not booking_states.is_active(current.status):
            raise BookingNotModifiableError(
                f"Booking {booking_id} is {current.status} and cannot be modified"
            )

        old_room_type = inventory.fetch_room_type(cur, current.room_type_id)
        room_type = _lock_room_type(cur, room_type_id)
        cost = _resolve_cost(cur, room_type, check_in, check_out, total_cost)

        if old_room_type is not None and old_room_type.hotel_id != room_type.hotel_id:
            _guard_capacity(cur, room_type, check_in, check_out, allow_overbooking=allow_overbooking)

            bookings.update_status(cur, booking_id, booking_states.CANCELLED)
            bookings.append_modification(
                cur,
                booking_id,
                CHANGE_CANCELLED,
                previous=current.stay_snapshot(),
                current={"status": booking_states.CANCELLED, "reason": "hotel_change"},
            )
            new_booking_id = _insert_new_booking(
                cur,
                event_id=current.event_id,
                person_id=current.person_id,
                room_type=room_type,
                check_in=check_in,
                check_out=check_out,
                total_cost=cost,
                payable=current.payable,
            )
            summary = bookings.fetch_summary(cur, new_booking_id)

            logger.info(
                "booking moved to another hotel",
                extra={
                    "extra_fields": {
                        "booking_id": booking_id,
                        "new_booking_id": new_booking_id,
                        "from_hotel_id": old_room_type.hotel_id,
                        "to_hotel_id": room_type.hotel_id,
                    }
                },
            )
            return {
                "hotel_changed": True,
                "modification_type": CHANGE_CANCELLED,
                "booking": summary,
                "previous_booking_id": booking_id,
            }

        modification_type = derive_modification_type(
            current, room_type_id=room_type_id, check_in=check_in, check_out=check_out
        )
        if modification_type is not None:
            _guard_capacity(
                cur,
                room_type,
                check_in,
                check_out,
                allow_overbooking=allow_overbooking,
                exclude_booking_id=booking_id,
            )

        bookings.update_stay(
            cur,
            booking_id,
            room_type_id=room_type_id,
            check_in=check_in,
            check_out=check_out,
            total_cost=cost,
            modification_type=modification_type,
        )
        if modification_type is not None or cost != current.total_cost:
            bookings.append_modification(
                cur,
                booking_id,
                modification_type or CHANGE_COST,
                previous=current.stay_snapshot(),
                current={
                    "room_type_id": room_type_id,
                    "check_in_date": check_in.isoformat(),
                    "check_out_date": check_out.isoformat(),
                    "total_cost": str(cost),
                    "status": current.status,
                },
            )
        summary = bookings.fetch_summary(cur, booking_id)

    logger.info(
        "booking modified",
        extra={
            "extra_fields": {
                "booking_id": booking_id,
                "modification_type": modification_type,
            }
        },
    )
    return {
        "hotel_changed": False,
        "modification_type": modification_type,
        "booking": summary,
        "previous_booking_id": None,
    }


def cancel_booking(booking_id: int) -> dict:
    """Cancel a booking. Cancelling twice is a no-op.

    Returns:
        {"status": "already_cancelled"} or {"status": "cancelled", "booking": summary}

    Raises:
        BookingNotFoundError: Unknown booking.
        InvalidTransitionError: Booking is invalidated.
    """
    with txn() as cur:
        current = _require_booking(cur, booking_id)
        if current.status == booking_states.CANCELLED:
            return {"status": "already_cancelled"}

        booking_states.assert_transition(current.status, booking_states.CANCELLED)
        bookings.update_status(cur, booking_id, booking_states.CANCELLED)
        bookings.append_modification(
            cur,
            booking_id,
            CHANGE_CANCELLED,
            previous=current.stay_snapshot(),
            current={"status": booking_states.CANCELLED},
        )
        summary = bookings.fetch_summary(cur, booking_id)

    logger.info("booking cancelled", extra={"extra_fields": {"booking_id": booking_id}})
    return {"status": "cancelled", "booking": summary}


def set_booking_status(booking_id: int, status: str) -> dict:
    """Move a booking to a new status through the transition table.

    Setting the status it already has is a no-op.

    Raises:
        BookingNotFoundError: Unknown booking.
        ValueError: Unknown status value.
        InvalidTransitionError: Transition not allowed.
    """
    with txn() as cur:
        current = _require_booking(cur, booking_id)
        if current.status == status:
            return bookings.fetch_summary(cur, booking_id)

        booking_states.assert_transition(current.status, status)
        bookings.update_status(cur, booking_id, status)
        bookings.append_modification(
            cur,
            booking_id,
            CHANGE_CANCELLED if status == booking_states.CANCELLED else CHANGE_STATUS,
            previous={"status": current.status},
            current={"status": status},
        )
        summary = bookings.fetch_summary(cur, booking_id)

    logger.info(
        "booking status changed",
        extra={
            "extra_fields": {
                "booking_id": booking_id,
                "from_status": current.status,
                "to_status": status,
            }
        },
    )
    return summary


def cancel_by_company(event_id: int, company: str) -> int:
    """Cancel all active bookings of an event whose guests belong to company.

    All-or-nothing: a failure cancels nothing.
    """
    if not company or not company.strip():
        raise ValidationError("Company is required")

    with txn() as cur:
        cancelled_ids = bookings.cancel_active_by_company(cur, event_id, company)
        for booking_id in cancelled_ids:
            bookings.append_modification(
                cur,
                booking_id,
                CHANGE_CANCELLED,
                current={"status": booking_states.CANCELLED, "reason": "company_cancelled"},
            )

    logger.info(
        "company bookings cancelled",
        extra={"extra_fields": {"event_id": event_id, "cancelled": len(cancelled_ids)}},
    )
    return len(cancelled_ids)


def recalculate_booking_costs(room_type_id: int, *, hotel_id: int | None = None) -> int:
    """Re-price every active booking of a room type from current nightly rates.

    When hotel_id is given the room type must belong to that hotel.

    Returns:
        Number of bookings whose total_cost changed.
    """
    updated = 0
    with txn() as cur:
        # Booking rows before the room type row, the order modify_booking takes them in.
        active = bookings.fetch_active_for_room_type(cur, room_type_id)
        room_type = _lock_room_type(cur, room_type_id)
        if hotel_id is not None and room_type.hotel_id != hotel_id:
            raise RoomTypeNotFoundError(f"Room type {room_type_id} not found in hotel {hotel_id}")
        overrides = inventory.fetch_overrides(cur, room_type_id)
        prices = {day: price for day, (_, price) in overrides.items()}

        for booking_id, check_in, check_out, old_cost in active:
            new_cost = compute_total_cost(
                check_in,
                check_out,
                base_price=room_type.base_price_per_night,
                prices_by_date=prices,
            )
            if new_cost == to_money(old_cost):
                continue
            bookings.update_total_cost(cur, booking_id, new_cost)
            bookings.append_modification(
                cur,
                booking_id,
                CHANGE_COST,
                previous={"total_cost": str(to_money(old_cost))},
                current={"total_cost": str(new_cost)},
            )
            updated += 1

    logger.info(
        "booking costs recalculated",
        extra={"extra_fields": {"room_type_id": room_type_id, "updated": updated}},
    )
    return updated


def get_booking_history(booking_id: int) -> list[dict]:
    """Modification log of a booking, oldest first."""
    with txn() as cur:
        if bookings.fetch_booking(cur, booking_id) is None:
            raise BookingNotFoundError(f"Booking {booking_id} not found")
        return bookings.fetch_modifications(cur, booking_id)


def get_booking(booking_id: int) -> dict:
    with txn() as cur:
        summary = bookings.fetch_summary(cur, booking_id)
    if summary is None:
        raise BookingNotFoundError(f"Booking {booking_id} not found")
    return summary
