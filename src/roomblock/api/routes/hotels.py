"""Hotel and room type catalog endpoints.

GET    /hotels                                          → list            (viewer+)
POST   /hotels                                          → create          (coordinator+)
GET    /hotels/{id}                                     → hotel + types   (viewer+)
PUT    /hotels/{id}                                     → partial update  (coordinator+)
DELETE /hotels/{id}                                     → cascade delete  (admin)
GET    /hotels/{id}/deletion-impact                     → counts          (viewer+)
POST   /hotels/{id}/room-types                          → create + seed   (coordinator+)
PUT    /hotels/{id}/room-types/{rt}                     → update + clamp  (coordinator+)
DELETE /hotels/{id}/room-types/{rt}                     → cascade delete  (admin)
POST   /hotels/{id}/room-types/{rt}/recalculate-bookings → re-price        (coordinator+)

Deletes are hard deletes. Bookings and inventory of the removed room types
go with them in the same transaction.
"""

from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Path
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from roomblock.api.rbac import RoleContext, require_role
from roomblock.domain import bookings as bookings_domain
from roomblock.domain import cascade, hotels
from roomblock.domain.availability import RoomTypeNotFoundError
from roomblock.domain.dates import ValidationError
from roomblock.domain.money import format_money
from roomblock.infra.db import txn
from roomblock.infra.repositories import inventory_repository as inventory

router = APIRouter(prefix="/hotels", tags=["hotels"])

_HOTEL_FIELDS = (
    "name",
    "area",
    "category",
    "stars",
    "address",
    "phone_number",
    "email",
    "website_link",
    "map_link",
    "contact_name",
    "contact_phone",
    "contact_mobile",
    "contact_email",
    "agreement_file_key",
)

_HOTEL_SELECT = f"SELECT hotel_id, {', '.join(_HOTEL_FIELDS)}, created_at, updated_at FROM hotels"


# ── Schemas ───────────────────────────────────────────────────────────────────


class _CamelModel(BaseModel):
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)


class HotelFields(_CamelModel):
    area: str | None = None
    category: str | None = None
    stars: int | None = None
    address: str | None = None
    phone_number: str | None = None
    email: str | None = None
    website_link: str | None = None
    map_link: str | None = None
    contact_name: str | None = None
    contact_phone: str | None = None
    contact_mobile: str | None = None
    contact_email: str | None = None
    agreement_file_key: str | None = None

    @field_validator("category")
    @classmethod
    def check_category(cls, v: str | None) -> str | None:
        if v is not None and v not in hotels.HOTEL_CATEGORIES:
            raise ValueError(f"category must be one of: {', '.join(hotels.HOTEL_CATEGORIES)}")
        return v

    @field_validator("stars")
    @classmethod
    def check_stars(cls, v: int | None) -> int | None:
        if v is not None and not 1 <= v <= 5:
            raise ValueError("stars must be between 1 and 5")
        return v


class CreateHotelRequest(HotelFields):
    name: str


class UpdateHotelRequest(HotelFields):
    name: str | None = None


class CreateRoomTypeRequest(_CamelModel):
    name: str
    description: str | None = None
    total_rooms: int
    base_price_per_night: Decimal


class UpdateRoomTypeRequest(_CamelModel):
    name: str | None = None
    description: str | None = None
    total_rooms: int | None = None
    base_price_per_night: Decimal | None = None


# ── Helpers ───────────────────────────────────────────────────────────────────


def _hotel_row_to_dict(row: tuple) -> dict:
    data = {"hotel_id": row[0]}
    data.update(zip(_HOTEL_FIELDS, row[1 : 1 + len(_HOTEL_FIELDS)]))
    created_at, updated_at = row[1 + len(_HOTEL_FIELDS) :]
    data["created_at"] = created_at.isoformat() if hasattr(created_at, "isoformat") else str(created_at)
    data["updated_at"] = updated_at.isoformat() if hasattr(updated_at, "isoformat") else str(updated_at)
    return data


# ── Hotels ────────────────────────────────────────────────────────────────────


@router.get("")
def list_hotels(ctx: RoleContext = Depends(require_role("viewer"))) -> list[dict]:
    """All hotels, best category and most stars first."""
    with txn() as cur:
        cur.execute(f"{_HOTEL_SELECT} ORDER BY {inventory.category_rank_sql('category')}, stars DESC, name")
        rows = cur.fetchall()
    return [_hotel_row_to_dict(r) for r in rows]


@router.post("", status_code=201)
def create_hotel(
    body: CreateHotelRequest,
    ctx: RoleContext = Depends(require_role("coordinator")),
) -> dict:
    values = body.model_dump()
    with txn() as cur:
        cur.execute(
            f"""
            INSERT INTO hotels ({', '.join(_HOTEL_FIELDS)})
            VALUES ({', '.join(['%s'] * len(_HOTEL_FIELDS))})
            RETURNING hotel_id
            """,  # noqa: S608 - column list is a module constant
            [values[f] for f in _HOTEL_FIELDS],
        )
        hotel_id = cur.fetchone()[0]
        cur.execute(f"{_HOTEL_SELECT} WHERE hotel_id = %s", (hotel_id,))
        row = cur.fetchone()
    return _hotel_row_to_dict(row)


@router.get("/{hotel_id}")
def get_hotel(
    hotel_id: int = Path(..., description="Hotel ID"),
    ctx: RoleContext = Depends(require_role("viewer")),
) -> dict:
    """Hotel with its room types."""
    with txn() as cur:
        cur.execute(f"{_HOTEL_SELECT} WHERE hotel_id = %s", (hotel_id,))
        row = cur.fetchone()
        if row is None:
            raise HTTPException(status_code=404, detail="Hotel not found")
        cur.execute(
            """
            SELECT room_type_id, name, description, total_rooms, base_price_per_night
            FROM room_types
            WHERE hotel_id = %s
            ORDER BY name
            """,
            (hotel_id,),
        )
        room_types = cur.fetchall()

    hotel = _hotel_row_to_dict(row)
    hotel["room_types"] = [
        {
            "room_type_id": r[0],
            "name": r[1],
            "description": r[2],
            "total_rooms": r[3],
            "base_price_per_night": format_money(r[4]),
        }
        for r in room_types
    ]
    return hotel


@router.put("/{hotel_id}")
def update_hotel(
    body: UpdateHotelRequest,
    hotel_id: int = Path(..., description="Hotel ID"),
    ctx: RoleContext = Depends(require_role("coordinator")),
) -> dict:
    """Partial update: only provided fields change."""
    changes = body.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No fields to update")

    sets = ["updated_at = now()"] + [f"{field} = %s" for field in changes]
    with txn() as cur:
        cur.execute(
            f"UPDATE hotels SET {', '.join(sets)} WHERE hotel_id = %s RETURNING hotel_id",  # noqa: S608
            [*changes.values(), hotel_id],
        )
        if cur.fetchone() is None:
            raise HTTPException(status_code=404, detail="Hotel not found")
        cur.execute(f"{_HOTEL_SELECT} WHERE hotel_id = %s", (hotel_id,))
        row = cur.fetchone()
    return _hotel_row_to_dict(row)


@router.delete("/{hotel_id}")
def delete_hotel(
    hotel_id: int = Path(..., description="Hotel ID"),
    ctx: RoleContext = Depends(require_role("admin")),
) -> dict:
    try:
        counts = cascade.delete_hotel(hotel_id)
    except cascade.HotelNotFoundError:
        raise HTTPException(status_code=404, detail="Hotel not found")
    return {"deleted": True, "hotel_id": hotel_id, **counts}


@router.get("/{hotel_id}/deletion-impact")
def get_deletion_impact(
    hotel_id: int = Path(..., description="Hotel ID"),
    ctx: RoleContext = Depends(require_role("viewer")),
) -> dict:
    try:
        return cascade.get_deletion_impact(hotel_id)
    except cascade.HotelNotFoundError:
        raise HTTPException(status_code=404, detail="Hotel not found")


# ── Room types ────────────────────────────────────────────────────────────────


@router.post("/{hotel_id}/room-types", status_code=201)
def create_room_type(
    body: CreateRoomTypeRequest,
    hotel_id: int = Path(..., description="Hotel ID"),
    ctx: RoleContext = Depends(require_role("coordinator")),
) -> dict:
    """Create a room type; default inventory rows are seeded for the horizon."""
    try:
        return hotels.create_room_type(
            hotel_id,
            name=body.name,
            description=body.description,
            total_rooms=body.total_rooms,
            base_price_per_night=body.base_price_per_night,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except cascade.HotelNotFoundError:
        raise HTTPException(status_code=404, detail="Hotel not found")


@router.put("/{hotel_id}/room-types/{room_type_id}")
def update_room_type(
    body: UpdateRoomTypeRequest,
    hotel_id: int = Path(..., description="Hotel ID"),
    room_type_id: int = Path(..., description="Room type ID"),
    ctx: RoleContext = Depends(require_role("coordinator")),
) -> dict:
    """Update a room type; lowering total_rooms caps future inventory rows."""
    try:
        return hotels.update_room_type(
            hotel_id,
            room_type_id,
            name=body.name,
            description=body.description,
            total_rooms=body.total_rooms,
            base_price_per_night=body.base_price_per_night,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except cascade.RoomTypeNotInHotelError:
        raise HTTPException(status_code=404, detail="Room type not found")


@router.delete("/{hotel_id}/room-types/{room_type_id}")
def delete_room_type(
    hotel_id: int = Path(..., description="Hotel ID"),
    room_type_id: int = Path(..., description="Room type ID"),
    ctx: RoleContext = Depends(require_role("admin")),
) -> dict:
    try:
        counts = cascade.delete_room_type(hotel_id, room_type_id)
    except cascade.RoomTypeNotInHotelError:
        raise HTTPException(status_code=404, detail="Room type not found")
    return {"deleted": True, "room_type_id": room_type_id, **counts}


@router.post("/{hotel_id}/room-types/{room_type_id}/recalculate-bookings")
def recalculate_bookings(
    hotel_id: int = Path(..., description="Hotel ID"),
    room_type_id: int = Path(..., description="Room type ID"),
    ctx: RoleContext = Depends(require_role("coordinator")),
) -> dict:
    """Re-price active bookings of the room type from current nightly rates."""
    try:
        updated = bookings_domain.recalculate_booking_costs(room_type_id, hotel_id=hotel_id)
    except RoomTypeNotFoundError:
        raise HTTPException(status_code=404, detail="Room type not found")
    return {"updatedBookings": updated}
