"""Room inventory endpoints.

GET /room-types/{id}/availability?start_date&end_date   → resolved days  (viewer+)
PUT /room-types/{id}/availability                       → one override   (coordinator+)
PUT /room-types/{id}/availability/batch                 → many overrides (coordinator+)
PUT /room-types/{id}/availability/range                 → fill a range   (coordinator+)
GET /room-types/{id}/quote?check_in&check_out           → stay price     (viewer+)
GET /availability/grid?start_date&end_date[&event_id]   → net grid       (viewer+)
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from roomblock.api.rbac import RoleContext, require_role
from roomblock.domain import availability
from roomblock.domain.dates import MAX_RANGE_DAYS, ValidationError

router = APIRouter(tags=["availability"])


# ── Schemas ───────────────────────────────────────────────────────────────────


class _CamelModel(BaseModel):
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)


class AvailabilityUpdate(_CamelModel):
    day: date = Field(..., alias="date")
    available_rooms: int
    price_per_night: Decimal


class BatchAvailabilityRequest(_CamelModel):
    updates: list[AvailabilityUpdate]

    @field_validator("updates")
    @classmethod
    def limit_batch_size(cls, v: list[AvailabilityUpdate]) -> list[AvailabilityUpdate]:
        if not v:
            raise ValueError("updates list cannot be empty")
        if len(v) > MAX_RANGE_DAYS:
            raise ValueError(f"batch size limit: {MAX_RANGE_DAYS} updates per request")
        return v


class RangeAvailabilityRequest(_CamelModel):
    start_date: date
    end_date: date
    available_rooms: int
    price_per_night: Decimal


def _to_update(item: AvailabilityUpdate) -> availability.OverrideUpdate:
    return availability.OverrideUpdate(
        date=item.day,
        available_rooms=item.available_rooms,
        price_per_night=item.price_per_night,
    )


# ── Room type inventory ───────────────────────────────────────────────────────


@router.get("/room-types/{room_type_id}/availability")
def get_room_type_availability(
    room_type_id: int = Path(..., description="Room type ID"),
    start_date: date = Query(...),
    end_date: date = Query(...),
    ctx: RoleContext = Depends(require_role("viewer")),
) -> list[dict]:
    """Capacity and price for every day in [start_date, end_date].

    Days without an override row fall back to the room type defaults.
    """
    try:
        days = availability.get_availability(room_type_id, start_date, end_date)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except availability.RoomTypeNotFoundError:
        raise HTTPException(status_code=404, detail="Room type not found")

    return [d.to_dict() for d in days]


@router.put("/room-types/{room_type_id}/availability")
def put_room_type_availability(
    body: AvailabilityUpdate,
    room_type_id: int = Path(..., description="Room type ID"),
    ctx: RoleContext = Depends(require_role("coordinator")),
) -> dict:
    try:
        day = availability.upsert_override(room_type_id, _to_update(body))
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except availability.RoomTypeNotFoundError:
        raise HTTPException(status_code=404, detail="Room type not found")

    return day.to_dict()


@router.put("/room-types/{room_type_id}/availability/batch")
def put_room_type_availability_batch(
    body: BatchAvailabilityRequest,
    room_type_id: int = Path(..., description="Room type ID"),
    ctx: RoleContext = Depends(require_role("coordinator")),
) -> dict:
    """Upsert many overrides. Nothing is written if any entry is invalid."""
    try:
        days = availability.upsert_overrides(room_type_id, [_to_update(u) for u in body.updates])
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except availability.RoomTypeNotFoundError:
        raise HTTPException(status_code=404, detail="Room type not found")

    return {"updated": len(days), "days": [d.to_dict() for d in days]}


@router.put("/room-types/{room_type_id}/availability/range")
def put_room_type_availability_range(
    body: RangeAvailabilityRequest,
    room_type_id: int = Path(..., description="Room type ID"),
    ctx: RoleContext = Depends(require_role("coordinator")),
) -> dict:
    try:
        written = availability.fill_override_range(
            room_type_id,
            body.start_date,
            body.end_date,
            body.available_rooms,
            body.price_per_night,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except availability.RoomTypeNotFoundError:
        raise HTTPException(status_code=404, detail="Room type not found")

    return {"updated": written}


@router.get("/room-types/{room_type_id}/quote")
def get_room_type_quote(
    room_type_id: int = Path(..., description="Room type ID"),
    check_in: date = Query(...),
    check_out: date = Query(...),
    ctx: RoleContext = Depends(require_role("viewer")),
) -> dict:
    try:
        quote = availability.quote_stay(room_type_id, check_in, check_out)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except availability.RoomTypeNotFoundError:
        raise HTTPException(status_code=404, detail="Room type not found")

    return quote.to_dict()


# ── Grid ──────────────────────────────────────────────────────────────────────


@router.get("/availability/grid")
def get_grid(
    start_date: date = Query(...),
    end_date: date = Query(...),
    event_id: int | None = Query(None),
    ctx: RoleContext = Depends(require_role("viewer")),
) -> dict:
    """Per hotel, room type and day: resolved, booked and net rooms.

    Net values may be negative when inventory was lowered after booking.
    """
    try:
        hotels = availability.get_availability_grid(start_date, end_date, event_id)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    return {
        "start_date": start_date.isoformat(),
        "end_date": end_date.isoformat(),
        "hotels": hotels,
    }
