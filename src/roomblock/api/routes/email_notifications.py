"""Email notification log endpoints.

GET  /email-notifications/last?eventId&guestId  → last record, or MOCK  (viewer+)
GET  /email-notifications?eventId&...&page&limit → paginated log        (viewer+)
POST /email-notifications                        → append a record      (coordinator+)

POST answers 500 when the reported status is "failed"; the row is stored
regardless. A sent guest-less BULK row also moves the event's reference point.
"""

from __future__ import annotations

from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from roomblock.api.rbac import RoleContext, require_role
from roomblock.domain import notifications as notifications_domain

router = APIRouter(prefix="/email-notifications", tags=["email-notifications"])


class RecordNotificationRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)

    event_id: int
    notification_type: str
    guest_id: int | None = None
    booking_id: int | None = None
    sent_at: datetime | None = None
    recipient_email: str | None = Field(None, alias="to")
    subject: str | None = None
    status: str = notifications_domain.STATUS_SENT
    status_id: str | None = None
    error_message: str | None = None

    @field_validator("notification_type")
    @classmethod
    def known_type(cls, v: str) -> str:
        if v not in notifications_domain.NOTIFICATION_TYPES:
            raise ValueError(
                f"notificationType must be one of: {', '.join(notifications_domain.NOTIFICATION_TYPES)}"
            )
        return v

    @field_validator("status")
    @classmethod
    def known_status(cls, v: str) -> str:
        if v not in notifications_domain.NOTIFICATION_STATUSES:
            raise ValueError(
                f"status must be one of: {', '.join(notifications_domain.NOTIFICATION_STATUSES)}"
            )
        return v


def _parse_guest_id(raw: str | None) -> int | None:
    if raw is None or raw == "" or raw.lower() == "null":
        return None
    try:
        return int(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail="guestId must be an integer or null")


@router.get("/last")
def get_last_notification(
    event_id: int = Query(..., alias="eventId"),
    guest_id: str | None = Query(None, alias="guestId"),
    ctx: RoleContext = Depends(require_role("viewer")),
) -> dict | None:
    """Latest notification for a guest; guestId=null asks for the latest bulk marker.

    Without any bulk marker a synthetic MOCK record dated at the event start
    is returned (id -1, never stored).
    """
    try:
        return notifications_domain.get_last_notification(event_id, _parse_guest_id(guest_id))
    except notifications_domain.EventNotFoundError:
        raise HTTPException(status_code=404, detail="Event not found")


@router.get("")
def list_notifications(
    event_id: int | None = Query(None, alias="eventId"),
    notification_type: str | None = Query(None, alias="notificationType"),
    status: str | None = Query(None),
    start_date: date | None = Query(None, alias="startDate"),
    end_date: date | None = Query(None, alias="endDate"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    ctx: RoleContext = Depends(require_role("viewer")),
) -> dict:
    """Newest first. endDate includes the whole day."""
    return notifications_domain.list_notification_log(
        event_id=event_id,
        notification_type=notification_type,
        status=status,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )


@router.post("")
def record_notification(
    body: RecordNotificationRequest,
    ctx: RoleContext = Depends(require_role("coordinator")),
) -> JSONResponse:
    row = notifications_domain.record_notification(
        event_id=body.event_id,
        notification_type=body.notification_type,
        status=body.status,
        guest_id=body.guest_id,
        booking_id=body.booking_id,
        recipient_email=body.recipient_email,
        subject=body.subject,
        status_id=body.status_id,
        error_message=body.error_message,
        sent_at=body.sent_at,
    )
    status_code = 500 if body.status == notifications_domain.STATUS_FAILED else 200
    return JSONResponse(status_code=status_code, content={"id": row["id"]})
