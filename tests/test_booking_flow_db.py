"""End-to-end booking and change-tracking flow (requires Postgres with migrations applied)."""

from __future__ import annotations

import os
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from unittest.mock import patch

import pytest

from roomblock.domain import bookings as bookings_domain
from roomblock.domain import cascade, hotels, notifications
from roomblock.domain.availability import CapacityExceededError, get_availability_grid
from roomblock.infra.db import txn

pytestmark = pytest.mark.skipif(
    not os.environ.get("DATABASE_URL"),
    reason="DATABASE_URL not set - skipping DB integration tests",
)

CHECK_IN = date(2031, 3, 10)
CHECK_OUT = date(2031, 3, 13)


@pytest.fixture
def world():
    """One hotel with a single-room type, one event linked to it and two guests."""
    with txn() as cur:
        cur.execute("INSERT INTO hotels (name, category, stars) VALUES ('Flow Hotel', 'Good', 3) RETURNING hotel_id")
        hotel_id = cur.fetchone()[0]
        cur.execute(
            "INSERT INTO events (name, start_date, end_date) VALUES ('Flow Summit', %s, %s) RETURNING event_id",
            (date(2020, 1, 1), date(2031, 3, 14)),
        )
        event_id = cur.fetchone()[0]
        cur.execute("INSERT INTO event_hotels (event_id, hotel_id) VALUES (%s, %s)", (event_id, hotel_id))
        person_ids = []
        for first, email in (("Ana", "ana@example.com"), ("Bruno", "bruno@example.com")):
            cur.execute(
                "INSERT INTO people (first_name, last_name, email) VALUES (%s, 'Flow', %s) RETURNING person_id",
                (first, email),
            )
            person_id = cur.fetchone()[0]
            cur.execute(
                "INSERT INTO people_details (person_id, company) VALUES (%s, 'Acme')",
                (person_id,),
            )
            person_ids.append(person_id)

    room_type = hotels.create_room_type(
        hotel_id,
        name="Single",
        description=None,
        total_rooms=1,
        base_price_per_night=Decimal("100"),
        seed_from=date(2031, 3, 1),
    )

    yield {
        "hotel_id": hotel_id,
        "event_id": event_id,
        "room_type_id": room_type["room_type_id"],
        "person_ids": person_ids,
    }

    cascade.delete_hotel(hotel_id)
    with txn() as cur:
        cur.execute("DELETE FROM email_notifications WHERE event_id = %s", (event_id,))
        cur.execute("DELETE FROM notification_reference_points WHERE event_id = %s", (event_id,))
        cur.execute("DELETE FROM events WHERE event_id = %s", (event_id,))
        cur.execute("DELETE FROM people_details WHERE person_id = ANY(%s)", (person_ids,))
        cur.execute("DELETE FROM people WHERE person_id = ANY(%s)", (person_ids,))


def _book(world, person_index: int = 0, **kwargs):
    return bookings_domain.create_booking(
        event_id=world["event_id"],
        person_id=world["person_ids"][person_index],
        room_type_id=world["room_type_id"],
        check_in=CHECK_IN,
        check_out=CHECK_OUT,
        **kwargs,
    )


class TestBookingFlow:
    def test_price_from_seeded_rates(self, world):
        booking = _book(world)
        assert booking["total_cost"] == "300.00"
        assert booking["status"] == "pending"
        assert booking["hotel_name"] == "Flow Hotel"

    def test_last_room_cannot_be_taken_twice(self, world):
        _book(world)
        with pytest.raises(CapacityExceededError):
            _book(world, person_index=1)

    def test_overbooking_shows_negative_net(self, world):
        _book(world)
        _book(world, person_index=1, allow_overbooking=True)

        grid = get_availability_grid(CHECK_IN, CHECK_IN, world["event_id"])
        day = grid[0]["room_types"][0]["days"][0]
        assert day["net_available_rooms"] == -1

    def test_cancel_frees_the_room(self, world):
        first = _book(world)
        bookings_domain.cancel_booking(first["booking_id"])
        second = _book(world, person_index=1)
        assert second["status"] == "pending"

    def test_cancel_by_company(self, world):
        _book(world)
        assert bookings_domain.cancel_by_company(world["event_id"], "Acme") == 1
        assert bookings_domain.cancel_by_company(world["event_id"], "Acme") == 0

    def test_modify_dates_records_history(self, world):
        booking = _book(world)
        result = bookings_domain.modify_booking(
            booking["booking_id"],
            room_type_id=world["room_type_id"],
            check_in=CHECK_IN,
            check_out=date(2031, 3, 14),
        )
        assert result["modification_type"] == "date_change"
        assert result["booking"]["total_cost"] == "400.00"

        history = bookings_domain.get_booking_history(booking["booking_id"])
        assert [h["change_type"] for h in history] == ["created", "date_change"]


class TestChangeTracking:
    def test_second_run_finds_nothing(self, world):
        booking = _book(world)
        with patch.object(notifications, "send_email", return_value="req-1"):
            first = notifications.send_updates(world["event_id"])
            second = notifications.send_updates(world["event_id"])

        assert first["sent"] == 1
        assert first["promoted"] == 1
        assert first["reference_advanced"] is True
        assert second["total"] == 0
        assert bookings_domain.get_booking(booking["booking_id"])["status"] == "confirmed"

    def test_failed_run_keeps_reference(self, world):
        _book(world)
        before = notifications.get_reference_point(world["event_id"])
        with patch.object(
            notifications, "send_email", side_effect=notifications.EmailSendError("down")
        ):
            result = notifications.send_updates(world["event_id"])

        assert result["failed"] == 1
        assert notifications.get_reference_point(world["event_id"]) == before

    def test_recorded_bulk_marker_is_the_boundary(self, world):
        _book(world)
        with patch.object(notifications, "send_email", return_value="req-1"):
            notifications.send_updates(world["event_id"])

        notifications.record_notification(
            event_id=world["event_id"],
            notification_type=notifications.NOTIFICATION_BULK,
            status=notifications.STATUS_SENT,
        )
        reference = notifications.get_reference_point(world["event_id"])
        last = notifications.get_last_notification(world["event_id"], None)

        assert reference.timestamp.isoformat() == last["sent_at"]
        assert notifications.get_changed_bookings(world["event_id"], reference.timestamp) == []

    def test_cascade_keeps_email_log(self, world):
        booking = _book(world)
        with patch.object(notifications, "send_email", return_value="req-1"):
            notifications.send_individual(booking["booking_id"])

        cascade.delete_room_type(world["hotel_id"], world["room_type_id"])
        with txn() as cur:
            cur.execute(
                "SELECT COUNT(*) FROM email_notifications WHERE booking_id = %s",
                (booking["booking_id"],),
            )
            assert cur.fetchone()[0] == 1


class _FailingCursor:
    """Delegates to a real cursor but fails the first statement matching `fail_on`."""

    def __init__(self, cur, fail_on: str):
        self._cur = cur
        self._fail_on = fail_on

    def execute(self, sql, params=None):
        if self._fail_on in sql:
            raise RuntimeError(f"induced failure on {self._fail_on}")
        return self._cur.execute(sql, params)

    def __getattr__(self, name):
        return getattr(self._cur, name)


class TestCascadeAtomicity:
    def test_failed_hotel_delete_removes_nothing(self, world):
        booking = _book(world)

        @contextmanager
        def failing_txn():
            with txn() as cur:
                yield _FailingCursor(cur, "DELETE FROM room_availability")

        with patch.object(cascade, "txn", failing_txn):
            with pytest.raises(RuntimeError):
                cascade.delete_hotel(world["hotel_id"])

        with txn() as cur:
            cur.execute("SELECT COUNT(*) FROM hotels WHERE hotel_id = %s", (world["hotel_id"],))
            assert cur.fetchone()[0] == 1
            cur.execute("SELECT COUNT(*) FROM bookings WHERE booking_id = %s", (booking["booking_id"],))
            assert cur.fetchone()[0] == 1
            cur.execute(
                "SELECT COUNT(*) FROM booking_modifications WHERE booking_id = %s",
                (booking["booking_id"],),
            )
            assert cur.fetchone()[0] == 1
            cur.execute(
                "SELECT COUNT(*) FROM room_availability WHERE room_type_id = %s",
                (world["room_type_id"],),
            )
            assert cur.fetchone()[0] > 0
