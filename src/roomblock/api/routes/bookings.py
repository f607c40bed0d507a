"""Booking endpoints.

POST  /bookings                          → create          (coordinator+)
GET   /bookings/{id}                     → summary         (viewer+)
PUT   /bookings/{id}                     → modify          (coordinator+)
POST  /bookings/{id}/actions/cancel      → cancel          (coordinator+)
PATCH /bookings/{id}/status              → transition      (coordinator+)
GET   /bookings/{id}/history             → change log      (viewer+)
POST  /bookings/{id}/notifications       → email the guest (coordinator+)
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Path
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from roomblock.api.rbac import RoleContext, require_role
from roomblock.domain import bookings as bookings_domain
from roomblock.domain import notifications as notifications_domain
from roomblock.domain.availability import CapacityExceededError, RoomTypeNotFoundError
from roomblock.domain.booking_states import STATUSES, InvalidTransitionError
from roomblock.domain.dates import ValidationError
from roomblock.observability.logging import get_logger

router = APIRouter(prefix="/bookings", tags=["bookings"])

logger = get_logger(__name__)


# ── Schemas ───────────────────────────────────────────────────────────────────


class _CamelModel(BaseModel):
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)


class CreateBookingRequest(_CamelModel):
    event_id: int
    person_id: int
    room_type_id: int
    check_in_date: date
    check_out_date: date
    total_cost: Decimal | None = None
    payable: bool = True
    allow_overbooking: bool = False


class ModifyBookingRequest(_CamelModel):
    room_type_id: int
    check_in_date: date
    check_out_date: date
    total_cost: Decimal | None = None
    allow_overbooking: bool = False


class StatusRequest(_CamelModel):
    status: str

    @field_validator("status")
    @classmethod
    def known_status(cls, v: str) -> str:
        if v not in STATUSES:
            raise ValueError(f"status must be one of: {', '.join(STATUSES)}")
        return v


# ── Helpers ───────────────────────────────────────────────────────────────────


def _capacity_conflict(exc: CapacityExceededError) -> HTTPException:
    return HTTPException(
        status_code=409,
        detail={
            "message": "No rooms available for the selected dates",
            "room_type_id": exc.room_type_id,
            "date": exc.night.isoformat(),
            "available": exc.available,
        },
    )


# ── Endpoints ─────────────────────────────────────────────────────────────────


@router.post("", status_code=201)
def create_booking(
    body: CreateBookingRequest,
    ctx: RoleContext = Depends(require_role("coordinator")),
) -> dict:
    """Create a pending booking.

    409 when any night of the stay is full, unless allowOverbooking is set.
    """
    try:
        return bookings_domain.create_booking(
            event_id=body.event_id,
            person_id=body.person_id,
            room_type_id=body.room_type_id,
            check_in=body.check_in_date,
            check_out=body.check_out_date,
            total_cost=body.total_cost,
            payable=body.payable,
            allow_overbooking=body.allow_overbooking,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except bookings_domain.PersonNotFoundError:
        raise HTTPException(status_code=404, detail="Person not found")
    except RoomTypeNotFoundError:
        raise HTTPException(status_code=404, detail="Room type not found")
    except bookings_domain.HotelNotInEventError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except CapacityExceededError as exc:
        raise _capacity_conflict(exc)


@router.get("/{booking_id}")
def get_booking(
    booking_id: int = Path(..., description="Booking ID"),
    ctx: RoleContext = Depends(require_role("viewer")),
) -> dict:
    try:
        return bookings_domain.get_booking(booking_id)
    except bookings_domain.BookingNotFoundError:
        raise HTTPException(status_code=404, detail="Booking not found")


@router.put("/{booking_id}")
def modify_booking(
    body: ModifyBookingRequest,
    booking_id: int = Path(..., description="Booking ID"),
    ctx: RoleContext = Depends(require_role("coordinator")),
) -> dict:
    """Overwrite room type, dates and cost.

    Moving to another hotel cancels this booking and returns a new one
    (hotel_changed=true, previous_booking_id set).
    """
    try:
        return bookings_domain.modify_booking(
            booking_id,
            room_type_id=body.room_type_id,
            check_in=body.check_in_date,
            check_out=body.check_out_date,
            total_cost=body.total_cost,
            allow_overbooking=body.allow_overbooking,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except bookings_domain.BookingNotFoundError:
        raise HTTPException(status_code=404, detail="Booking not found")
    except RoomTypeNotFoundError:
        raise HTTPException(status_code=404, detail="Room type not found")
    except bookings_domain.BookingNotModifiableError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except CapacityExceededError as exc:
        raise _capacity_conflict(exc)


@router.post("/{booking_id}/actions/cancel")
def cancel_booking(
    booking_id: int = Path(..., description="Booking ID"),
    ctx: RoleContext = Depends(require_role("coordinator")),
) -> dict:
    """Cancel a booking (idempotent: already_cancelled on repeat)."""
    try:
        return bookings_domain.cancel_booking(booking_id)
    except bookings_domain.BookingNotFoundError:
        raise HTTPException(status_code=404, detail="Booking not found")
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc))


@router.patch("/{booking_id}/status")
def set_booking_status(
    body: StatusRequest,
    booking_id: int = Path(..., description="Booking ID"),
    ctx: RoleContext = Depends(require_role("coordinator")),
) -> dict:
    try:
        return bookings_domain.set_booking_status(booking_id, body.status)
    except bookings_domain.BookingNotFoundError:
        raise HTTPException(status_code=404, detail="Booking not found")
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc))


@router.get("/{booking_id}/history")
def get_booking_history(
    booking_id: int = Path(..., description="Booking ID"),
    ctx: RoleContext = Depends(require_role("viewer")),
) -> dict:
    try:
        entries = bookings_domain.get_booking_history(booking_id)
    except bookings_domain.BookingNotFoundError:
        raise HTTPException(status_code=404, detail="Booking not found")
    return {"booking_id": booking_id, "modifications": entries}


@router.post("/{booking_id}/notifications")
def notify_guest(
    booking_id: int = Path(..., description="Booking ID"),
    ctx: RoleContext = Depends(require_role("coordinator")),
) -> dict:
    """Send the INDIVIDUAL booking email. The outcome is recorded either way."""
    try:
        result = notifications_domain.send_individual(booking_id)
    except bookings_domain.BookingNotFoundError:
        raise HTTPException(status_code=404, detail="Booking not found")

    if result["status"] != notifications_domain.STATUS_SENT:
        logger.warning(
            "individual notification failed",
            extra={"extra_fields": {"booking_id": booking_id}},
        )
    return result
