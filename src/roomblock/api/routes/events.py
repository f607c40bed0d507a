"""Event-scoped booking and notification endpoints.

POST /events/{id}/bookings/cancel-by-company     → bulk cancel      (coordinator+)
GET  /events/{id}/guests-with-changes?since=ISO  → changed bookings (viewer+)
GET  /events/{id}/notifications/reference-point  → "since" boundary (viewer+)
POST /events/{id}/notifications/send-updates     → CHANGES batch    (coordinator+)
POST /events/{id}/notifications/send-all         → BULK batch       (coordinator+)
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from pydantic import BaseModel, ConfigDict

from roomblock.api.rbac import RoleContext, require_role
from roomblock.domain import bookings as bookings_domain
from roomblock.domain import notifications as notifications_domain
from roomblock.domain.dates import ValidationError

router = APIRouter(prefix="/events", tags=["events"])


class CancelByCompanyRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    company: str


@router.post("/{event_id}/bookings/cancel-by-company")
def cancel_by_company(
    body: CancelByCompanyRequest,
    event_id: int = Path(..., description="Event ID"),
    ctx: RoleContext = Depends(require_role("coordinator")),
) -> dict:
    """Cancel every active booking of the event held by guests of one company."""
    try:
        count = bookings_domain.cancel_by_company(event_id, body.company)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"cancelledCount": count}


@router.get("/{event_id}/guests-with-changes")
def guests_with_changes(
    event_id: int = Path(..., description="Event ID"),
    since: datetime | None = Query(None, description="Defaults to the event's reference point"),
    ctx: RoleContext = Depends(require_role("viewer")),
) -> dict:
    if since is None:
        try:
            since = notifications_domain.get_reference_point(event_id).timestamp
        except notifications_domain.EventNotFoundError:
            raise HTTPException(status_code=404, detail="Event not found")
    elif since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)

    guests = notifications_domain.get_changed_bookings(event_id, since)
    return {"since": since.isoformat(), "guests": guests}


@router.get("/{event_id}/notifications/reference-point")
def get_reference_point(
    event_id: int = Path(..., description="Event ID"),
    ctx: RoleContext = Depends(require_role("viewer")),
) -> dict:
    try:
        return notifications_domain.get_reference_point(event_id).to_dict()
    except notifications_domain.EventNotFoundError:
        raise HTTPException(status_code=404, detail="Event not found")


def _run(send, event_id: int) -> dict:
    try:
        return send(event_id)
    except notifications_domain.EventNotFoundError:
        raise HTTPException(status_code=404, detail="Event not found")
    except notifications_domain.BatchAlreadyRunningError as exc:
        raise HTTPException(status_code=409, detail=str(exc))


@router.post("/{event_id}/notifications/send-updates")
def send_updates(
    event_id: int = Path(..., description="Event ID"),
    ctx: RoleContext = Depends(require_role("coordinator")),
) -> dict:
    """Email guests whose bookings changed since the last successful batch."""
    return _run(notifications_domain.send_updates, event_id)


@router.post("/{event_id}/notifications/send-all")
def send_all(
    event_id: int = Path(..., description="Event ID"),
    ctx: RoleContext = Depends(require_role("coordinator")),
) -> dict:
    return _run(notifications_domain.send_to_all, event_id)
