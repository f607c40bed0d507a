"""Availability calculator - per-date inventory overlaid on room type defaults.

A room type carries a default capacity (total_rooms) and rate
(base_price_per_night). Staff may override either for a single date with a
room_availability row; a date without a row silently uses the defaults.

Net availability for the allocation grid additionally subtracts every active
booking whose [check_in_date, check_out_date) covers the date. Net values can
go negative when inventory was edited downward after bookings were taken;
they are reported as-is and logged.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable

from psycopg2.extensions import cursor as PgCursor

from roomblock.domain.dates import (
    ValidationError,
    iter_days,
    iter_nights,
    validate_range,
    validate_stay,
)
from roomblock.domain.money import format_money, to_money
from roomblock.infra.db import txn
from roomblock.infra.repositories import inventory_repository as inventory
from roomblock.infra.repositories.inventory_repository import RoomTypeRecord
from roomblock.observability.logging import get_logger

logger = get_logger(__name__)

DEFAULT_INVENTORY_HORIZON_DAYS = 365


class RoomTypeNotFoundError(Exception):
    """Raised when the room type does not exist."""

    pass


class CapacityExceededError(Exception):
    """Raised when a stay needs a room on a night with none left."""

    def __init__(self, room_type_id: int, night: date, available: int) -> None:
        self.room_type_id = room_type_id
        self.night = night
        self.available = available
        super().__init__(
            f"No rooms left for room type {room_type_id} on {night.isoformat()} "
            f"(net availability {available})"
        )


@dataclass
class DayAvailability:
    date: date
    available_rooms: int
    price_per_night: Decimal
    booked_rooms: int = 0

    @property
    def net_available_rooms(self) -> int:
        return self.available_rooms - self.booked_rooms

    def to_dict(self, *, include_bookings: bool = False) -> dict:
        data = {
            "date": self.date.isoformat(),
            "available_rooms": self.available_rooms,
            "price_per_night": format_money(self.price_per_night),
        }
        if include_bookings:
            data["booked_rooms"] = self.booked_rooms
            data["net_available_rooms"] = self.net_available_rooms
        return data


@dataclass
class OverrideUpdate:
    date: date
    available_rooms: int
    price_per_night: Decimal


@dataclass
class StayQuote:
    room_type_id: int
    check_in: date
    check_out: date
    nightly: list[tuple[date, Decimal]] = field(default_factory=list)

    @property
    def nights(self) -> int:
        return len(self.nightly)

    @property
    def total_cost(self) -> Decimal:
        return to_money(sum((price for _, price in self.nightly), Decimal("0")))

    def to_dict(self) -> dict:
        return {
            "room_type_id": self.room_type_id,
            "check_in": self.check_in.isoformat(),
            "check_out": self.check_out.isoformat(),
            "nights": self.nights,
            "total_cost": format_money(self.total_cost),
            "nightly": [
                {"date": d.isoformat(), "price_per_night": format_money(p)}
                for d, p in self.nightly
            ],
        }


# ── Pure calculations ─────────────────────────────────────────────────────────


def resolve_days(
    start: date,
    end: date,
    *,
    total_rooms: int,
    base_price: Decimal,
    overrides: dict[date, tuple[int, Decimal]],
) -> list[DayAvailability]:
    """Resolve capacity and price for every day in [start, end].

    An override row strictly wins over the defaults for its date.
    """
    days = []
    for day in iter_days(start, end):
        if day in overrides:
            available, price = overrides[day]
        else:
            available, price = total_rooms, base_price
        days.append(DayAvailability(date=day, available_rooms=available, price_per_night=price))
    return days


def count_booked_rooms(
    spans: Iterable[tuple[date, date]],
    start: date,
    end: date,
) -> dict[date, int]:
    """Count, per day in [start, end], the stays whose nights cover it."""
    counts: dict[date, int] = {}
    for check_in, check_out in spans:
        for night in iter_nights(max(check_in, start), min(check_out, end + timedelta(days=1))):
            counts[night] = counts.get(night, 0) + 1
    return counts


def nightly_prices(
    check_in: date,
    check_out: date,
    *,
    base_price: Decimal,
    prices_by_date: dict[date, Decimal],
) -> list[tuple[date, Decimal]]:
    return [(night, prices_by_date.get(night, base_price)) for night in iter_nights(check_in, check_out)]


def compute_total_cost(
    check_in: date,
    check_out: date,
    *,
    base_price: Decimal,
    prices_by_date: dict[date, Decimal],
) -> Decimal:
    """Sum of nightly prices over [check_in, check_out).

    Nights without an override price are charged the base rate.
    """
    prices = nightly_prices(check_in, check_out, base_price=base_price, prices_by_date=prices_by_date)
    return to_money(sum((p for _, p in prices), Decimal("0")))


def validate_override(
    room_type: RoomTypeRecord,
    available_rooms: int,
    price_per_night: Decimal,
) -> None:
    if available_rooms < 0 or available_rooms > room_type.total_rooms:
        raise ValidationError(
            f"Available rooms must be between 0 and {room_type.total_rooms}"
        )
    if price_per_night < 0:
        raise ValidationError("Price must be greater than or equal to 0")


def _get_horizon_days() -> int:
    raw = os.environ.get("INVENTORY_HORIZON_DAYS", "")
    try:
        value = int(raw)
    except ValueError:
        return DEFAULT_INVENTORY_HORIZON_DAYS
    return value if value > 0 else DEFAULT_INVENTORY_HORIZON_DAYS


# ── Reads ─────────────────────────────────────────────────────────────────────


def _require_room_type(cur: PgCursor, room_type_id: int) -> RoomTypeRecord:
    room_type = inventory.fetch_room_type(cur, room_type_id)
    if room_type is None:
        raise RoomTypeNotFoundError(f"Room type {room_type_id} not found")
    return room_type


def get_availability(room_type_id: int, start: date, end: date) -> list[DayAvailability]:
    """Resolved capacity and price for every day in [start, end].

    Raises:
        ValidationError: Inverted or oversized range.
        RoomTypeNotFoundError: Unknown room type.
    """
    validate_range(start, end)

    with txn() as cur:
        room_type = _require_room_type(cur, room_type_id)
        overrides = inventory.fetch_overrides(cur, room_type_id, start, end)

    return resolve_days(
        start,
        end,
        total_rooms=room_type.total_rooms,
        base_price=room_type.base_price_per_night,
        overrides=overrides,
    )


def net_days_for_room_type(
    cur: PgCursor,
    room_type: RoomTypeRecord,
    start: date,
    end: date,
    *,
    exclude_booking_id: int | None = None,
) -> list[DayAvailability]:
    """Resolved days for [start, end] with active bookings subtracted."""
    overrides = inventory.fetch_overrides(cur, room_type.room_type_id, start, end)
    days = resolve_days(
        start,
        end,
        total_rooms=room_type.total_rooms,
        base_price=room_type.base_price_per_night,
        overrides=overrides,
    )
    spans = inventory.fetch_active_booking_spans(
        cur,
        [room_type.room_type_id],
        start,
        end + timedelta(days=1),
        exclude_booking_id=exclude_booking_id,
    )
    booked = count_booked_rooms(((s[1], s[2]) for s in spans), start, end)
    for day in days:
        day.booked_rooms = booked.get(day.date, 0)
    return days


def assert_capacity(
    cur: PgCursor,
    room_type: RoomTypeRecord,
    check_in: date,
    check_out: date,
    *,
    exclude_booking_id: int | None = None,
) -> None:
    """Raise CapacityExceededError if any night of the stay has no room left.

    Call with the room type row locked (inventory.lock_room_type) so the
    check and the following write are atomic with respect to other bookings.
    """
    last_night = check_out - timedelta(days=1)
    days = net_days_for_room_type(
        cur, room_type, check_in, last_night, exclude_booking_id=exclude_booking_id
    )
    for day in days:
        if day.net_available_rooms < 1:
            raise CapacityExceededError(room_type.room_type_id, day.date, day.net_available_rooms)


def get_availability_grid(
    start: date,
    end: date,
    event_id: int | None = None,
) -> list[dict]:
    """Hotel-wide net availability grid for [start, end].

    When event_id is given only hotels linked to the event are included.
    Bookings from every event count against the shared physical inventory.
    """
    validate_range(start, end)

    with txn() as cur:
        cur.execute(
            f"""
            SELECT h.hotel_id, h.name, h.category, h.stars,
                   rt.room_type_id, rt.name, rt.total_rooms, rt.base_price_per_night
            FROM hotels h
            LEFT JOIN room_types rt ON rt.hotel_id = h.hotel_id
            WHERE %s::integer IS NULL
               OR h.hotel_id IN (SELECT hotel_id FROM event_hotels WHERE event_id = %s::integer)
            ORDER BY {inventory.category_rank_sql("h.category")}, h.stars DESC, h.name, rt.name
            """,  # noqa: S608 - ORDER BY built from a fixed expression
            (event_id, event_id),
        )
        rows = cur.fetchall()

        room_type_ids = [r[4] for r in rows if r[4] is not None]
        overrides_by_type: dict[int, dict[date, tuple[int, Decimal]]] = {}
        if room_type_ids:
            cur.execute(
                """
                SELECT room_type_id, date, available_rooms, price_per_night
                FROM room_availability
                WHERE room_type_id = ANY(%s)
                  AND date >= %s
                  AND date <= %s
                """,
                (room_type_ids, start, end),
            )
            for rt_id, day, available, price in cur.fetchall():
                overrides_by_type.setdefault(rt_id, {})[day] = (available, Decimal(price))

        spans = inventory.fetch_active_booking_spans(
            cur, room_type_ids, start, end + timedelta(days=1)
        )

    spans_by_type: dict[int, list[tuple[date, date]]] = {}
    for rt_id, check_in, check_out in spans:
        spans_by_type.setdefault(rt_id, []).append((check_in, check_out))

    hotels: dict[int, dict] = {}
    for hotel_id, hotel_name, category, stars, rt_id, rt_name, total_rooms, base_price in rows:
        hotel = hotels.setdefault(
            hotel_id,
            {
                "hotel_id": hotel_id,
                "name": hotel_name,
                "category": category,
                "stars": stars,
                "room_types": [],
            },
        )
        if rt_id is None:
            continue

        days = resolve_days(
            start,
            end,
            total_rooms=total_rooms,
            base_price=Decimal(base_price),
            overrides=overrides_by_type.get(rt_id, {}),
        )
        booked = count_booked_rooms(spans_by_type.get(rt_id, []), start, end)
        for day in days:
            day.booked_rooms = booked.get(day.date, 0)
            if day.net_available_rooms < 0:
                logger.warning(
                    "overbooking detected",
                    extra={
                        "extra_fields": {
                            "hotel_id": hotel_id,
                            "room_type_id": rt_id,
                            "date": day.date.isoformat(),
                            "available_rooms": day.available_rooms,
                            "booked_rooms": day.booked_rooms,
                        }
                    },
                )

        hotel["room_types"].append(
            {
                "room_type_id": rt_id,
                "name": rt_name,
                "total_rooms": total_rooms,
                "base_price_per_night": format_money(Decimal(base_price)),
                "days": [d.to_dict(include_bookings=True) for d in days],
            }
        )

    return list(hotels.values())


def quote_stay(room_type_id: int, check_in: date, check_out: date) -> StayQuote:
    """Price a prospective stay night by night from current rates."""
    validate_stay(check_in, check_out)
    with txn() as cur:
        room_type = _require_room_type(cur, room_type_id)
        overrides = inventory.fetch_overrides(
            cur, room_type_id, check_in, check_out - timedelta(days=1)
        )

    prices = {day: price for day, (_, price) in overrides.items()}
    return StayQuote(
        room_type_id=room_type_id,
        check_in=check_in,
        check_out=check_out,
        nightly=nightly_prices(
            check_in,
            check_out,
            base_price=room_type.base_price_per_night,
            prices_by_date=prices,
        ),
    )


# ── Writes ────────────────────────────────────────────────────────────────────


def upsert_override(room_type_id: int, update: OverrideUpdate) -> DayAvailability:
    """Create or replace one date override after range checks."""
    with txn() as cur:
        room_type = _require_room_type(cur, room_type_id)
        validate_override(room_type, update.available_rooms, update.price_per_night)
        day, available, price = inventory.upsert_override(
            cur,
            room_type_id=room_type_id,
            day=update.date,
            available_rooms=update.available_rooms,
            price_per_night=update.price_per_night,
        )

    return DayAvailability(date=day, available_rooms=available, price_per_night=price)


def upsert_overrides(room_type_id: int, updates: list[OverrideUpdate]) -> list[DayAvailability]:
    """Upsert many overrides all-or-nothing.

    Every entry is validated before the first write; a database error on any
    row rolls the whole batch back.
    """
    with txn() as cur:
        room_type = _require_room_type(cur, room_type_id)
        for index, update in enumerate(updates):
            try:
                validate_override(room_type, update.available_rooms, update.price_per_night)
            except ValidationError as exc:
                raise ValidationError(f"updates[{index}] ({update.date.isoformat()}): {exc}") from exc

        results = []
        for update in updates:
            day, available, price = inventory.upsert_override(
                cur,
                room_type_id=room_type_id,
                day=update.date,
                available_rooms=update.available_rooms,
                price_per_night=update.price_per_night,
            )
            results.append(DayAvailability(date=day, available_rooms=available, price_per_night=price))

    logger.info(
        "availability batch written",
        extra={"extra_fields": {"room_type_id": room_type_id, "rows": len(results)}},
    )
    return results


def fill_override_range(
    room_type_id: int,
    start: date,
    end: date,
    available_rooms: int,
    price_per_night: Decimal,
) -> int:
    """Apply one capacity/price to every day of [start, end]. Returns rows written."""
    validate_range(start, end)
    with txn() as cur:
        room_type = _require_room_type(cur, room_type_id)
        validate_override(room_type, available_rooms, price_per_night)
        return inventory.fill_override_range(
            cur,
            room_type_id=room_type_id,
            start=start,
            end=end,
            available_rooms=available_rooms,
            price_per_night=price_per_night,
        )


def seed_inventory_horizon(cur: PgCursor, room_type: RoomTypeRecord, start: date) -> int:
    """Create default override rows for a freshly created room type."""
    horizon = _get_horizon_days()
    return inventory.fill_override_range(
        cur,
        room_type_id=room_type.room_type_id,
        start=start,
        end=start + timedelta(days=horizon),
        available_rooms=room_type.total_rooms,
        price_per_night=room_type.base_price_per_night,
    )
