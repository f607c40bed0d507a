"""Tests for booking and event endpoints (domain layer mocked).

Covers:
- POST/GET/PUT /bookings, cancel, status, history, notifications
- /events/{id} bulk cancel, changed guests, reference point, batch sends
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from roomblock.api.factory import create_app
from roomblock.domain import bookings as bookings_domain
from roomblock.domain import notifications as notifications_domain
from roomblock.domain.availability import CapacityExceededError
from roomblock.domain.booking_states import InvalidTransitionError

from .helpers import authed_app

DOMAIN = "roomblock.domain.bookings"
NOTIFY = "roomblock.domain.notifications"

CREATE_BODY = {
    "eventId": 7,
    "personId": 55,
    "roomTypeId": 1,
    "checkInDate": "2024-06-01",
    "checkOutDate": "2024-06-04",
}


def _client() -> TestClient:
    return TestClient(authed_app(create_app()))


@pytest.fixture
def coordinator():
    with patch("roomblock.api.rbac._get_staff_role", return_value="coordinator"):
        yield _client()


@pytest.fixture
def viewer():
    with patch("roomblock.api.rbac._get_staff_role", return_value="viewer"):
        yield _client()


class TestCreateBooking:
    def test_created(self, coordinator):
        with patch(f"{DOMAIN}.create_booking", return_value={"booking_id": 1, "status": "pending"}) as create:
            response = coordinator.post("/bookings", json=CREATE_BODY)

        assert response.status_code == 201
        assert response.json()["status"] == "pending"
        kwargs = create.call_args.kwargs
        assert kwargs["check_in"] == date(2024, 6, 1)
        assert kwargs["total_cost"] is None
        assert kwargs["allow_overbooking"] is False

    def test_explicit_cost_and_override(self, coordinator):
        body = {**CREATE_BODY, "totalCost": "250.50", "allowOverbooking": True}
        with patch(f"{DOMAIN}.create_booking", return_value={}) as create:
            coordinator.post("/bookings", json=body)
        assert create.call_args.kwargs["total_cost"] == Decimal("250.50")
        assert create.call_args.kwargs["allow_overbooking"] is True

    def test_missing_field_is_400(self, coordinator):
        body = {k: v for k, v in CREATE_BODY.items() if k != "personId"}
        response = coordinator.post("/bookings", json=body)
        assert response.status_code == 400
        assert "personId" in response.json()["detail"]

    def test_unknown_field_is_400(self, coordinator):
        response = coordinator.post("/bookings", json={**CREATE_BODY, "guestName": "x"})
        assert response.status_code == 400

    def test_capacity_conflict(self, coordinator):
        with patch(
            f"{DOMAIN}.create_booking",
            side_effect=CapacityExceededError(1, date(2024, 6, 2), 0),
        ):
            response = coordinator.post("/bookings", json=CREATE_BODY)

        assert response.status_code == 409
        assert response.json()["detail"] == {
            "message": "No rooms available for the selected dates",
            "room_type_id": 1,
            "date": "2024-06-02",
            "available": 0,
        }

    def test_unknown_person(self, coordinator):
        with patch(f"{DOMAIN}.create_booking", side_effect=bookings_domain.PersonNotFoundError("x")):
            response = coordinator.post("/bookings", json=CREATE_BODY)
        assert response.status_code == 404

    def test_bad_dates(self, coordinator):
        response = coordinator.post(
            "/bookings", json={**CREATE_BODY, "checkOutDate": "2024-06-01"}
        )
        assert response.status_code == 400
        assert "Check-out" in response.json()["detail"]

    def test_viewer_forbidden(self, viewer):
        assert viewer.post("/bookings", json=CREATE_BODY).status_code == 403


class TestModifyBooking:
    def test_modified(self, coordinator):
        result = {
            "hotel_changed": False,
            "modification_type": "date_change",
            "booking": {"booking_id": 1},
            "previous_booking_id": None,
        }
        with patch(f"{DOMAIN}.modify_booking", return_value=result):
            response = coordinator.put(
                "/bookings/1",
                json={"roomTypeId": 1, "checkInDate": "2024-06-01", "checkOutDate": "2024-06-05"},
            )
        assert response.status_code == 200
        assert response.json()["modification_type"] == "date_change"

    def test_cancelled_booking_conflict(self, coordinator):
        with patch(
            f"{DOMAIN}.modify_booking",
            side_effect=bookings_domain.BookingNotModifiableError("cancelled"),
        ):
            response = coordinator.put(
                "/bookings/1",
                json={"roomTypeId": 1, "checkInDate": "2024-06-01", "checkOutDate": "2024-06-05"},
            )
        assert response.status_code == 409

    def test_not_found(self, coordinator):
        with patch(f"{DOMAIN}.modify_booking", side_effect=bookings_domain.BookingNotFoundError("x")):
            response = coordinator.put(
                "/bookings/9",
                json={"roomTypeId": 1, "checkInDate": "2024-06-01", "checkOutDate": "2024-06-05"},
            )
        assert response.status_code == 404


class TestStatusAndCancel:
    def test_cancel_idempotent(self, coordinator):
        with patch(f"{DOMAIN}.cancel_booking", return_value={"status": "already_cancelled"}):
            response = coordinator.post("/bookings/1/actions/cancel")
        assert response.json() == {"status": "already_cancelled"}

    def test_cancel_invalidated_conflict(self, coordinator):
        with patch(
            f"{DOMAIN}.cancel_booking",
            side_effect=InvalidTransitionError("invalidated", "cancelled"),
        ):
            response = coordinator.post("/bookings/1/actions/cancel")
        assert response.status_code == 409

    def test_unknown_status_value(self, coordinator):
        response = coordinator.patch("/bookings/1/status", json={"status": "checked_in"})
        assert response.status_code == 400

    def test_status_transition(self, coordinator):
        with patch(f"{DOMAIN}.set_booking_status", return_value={"status": "confirmed"}) as update:
            response = coordinator.patch("/bookings/1/status", json={"status": "confirmed"})
        assert response.status_code == 200
        update.assert_called_once_with(1, "confirmed")

    def test_rejected_transition(self, coordinator):
        with patch(
            f"{DOMAIN}.set_booking_status",
            side_effect=InvalidTransitionError("cancelled", "confirmed"),
        ):
            response = coordinator.patch("/bookings/1/status", json={"status": "confirmed"})
        assert response.status_code == 409


class TestReads:
    def test_get_booking(self, viewer):
        with patch(f"{DOMAIN}.get_booking", return_value={"booking_id": 1}):
            assert viewer.get("/bookings/1").json() == {"booking_id": 1}

    def test_history(self, viewer):
        entries = [{"id": 1, "change_type": "created"}]
        with patch(f"{DOMAIN}.get_booking_history", return_value=entries):
            response = viewer.get("/bookings/1/history")
        assert response.json() == {"booking_id": 1, "modifications": entries}


class TestNotifyGuest:
    def test_failed_send_still_200(self, coordinator):
        result = {"booking_id": 1, "status": "failed", "status_id": None, "error_message": "HTTP 500"}
        with patch(f"{NOTIFY}.send_individual", return_value=result):
            response = coordinator.post("/bookings/1/notifications")
        assert response.status_code == 200
        assert response.json()["status"] == "failed"


class TestEventEndpoints:
    def test_cancel_by_company(self, coordinator):
        with patch(f"{DOMAIN}.cancel_by_company", return_value=4) as cancel:
            response = coordinator.post(
                "/events/7/bookings/cancel-by-company", json={"company": "Acme"}
            )
        assert response.json() == {"cancelledCount": 4}
        cancel.assert_called_once_with(7, "Acme")

    def test_guests_with_changes_defaults_to_reference_point(self, viewer):
        ref = notifications_domain.ReferencePoint(
            datetime(2024, 5, 1, tzinfo=timezone.utc), notifications_domain.SOURCE_MOCK
        )
        with patch(f"{NOTIFY}.get_reference_point", return_value=ref), patch(
            f"{NOTIFY}.get_changed_bookings", return_value=[]
        ) as changed:
            response = viewer.get("/events/7/guests-with-changes")
        assert response.json() == {"since": "2024-05-01T00:00:00+00:00", "guests": []}
        changed.assert_called_once_with(7, ref.timestamp)

    def test_guests_with_changes_naive_since_is_utc(self, viewer):
        with patch(f"{NOTIFY}.get_changed_bookings", return_value=[]) as changed:
            viewer.get("/events/7/guests-with-changes", params={"since": "2024-05-01T10:00:00"})
        assert changed.call_args.args[1] == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)

    def test_reference_point_unknown_event(self, viewer):
        with patch(
            f"{NOTIFY}.get_reference_point",
            side_effect=notifications_domain.EventNotFoundError("x"),
        ):
            assert viewer.get("/events/7/notifications/reference-point").status_code == 404

    def test_send_updates(self, coordinator):
        summary = {"event_id": 7, "sent": 2, "failed": 0, "reference_advanced": True}
        with patch(f"{NOTIFY}.send_updates", return_value=summary):
            response = coordinator.post("/events/7/notifications/send-updates")
        assert response.json() == summary

    def test_send_all_while_running(self, coordinator):
        with patch(
            f"{NOTIFY}.send_to_all",
            side_effect=notifications_domain.BatchAlreadyRunningError("busy"),
        ):
            response = coordinator.post("/events/7/notifications/send-all")
        assert response.status_code == 409

    def test_viewer_cannot_send(self, viewer):
        assert viewer.post("/events/7/notifications/send-updates").status_code == 403
