"""Tests for hotel/room type cascade deletes and room type writes."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock, patch

import psycopg2
import pytest

from roomblock.domain import cascade, hotels
from roomblock.domain.dates import ValidationError

from .helpers import room_type, txn_factory

_NOW = datetime(2024, 5, 1, tzinfo=timezone.utc)


def _executed_sql(cur: MagicMock) -> list[str]:
    return [" ".join(c.args[0].split()) for c in cur.execute.call_args_list]


class TestDeleteRoomType:
    def test_not_in_hotel(self):
        cur = MagicMock()
        cur.fetchone.return_value = None
        with patch.object(cascade, "txn", txn_factory(cur)):
            with pytest.raises(cascade.RoomTypeNotInHotelError):
                cascade.delete_room_type(10, 1)

    def test_children_deleted_before_room_type(self):
        cur = MagicMock()
        cur.fetchone.return_value = (1,)
        cur.rowcount = 2
        with patch.object(cascade, "txn", txn_factory(cur)):
            counts = cascade.delete_room_type(10, 1)

        statements = _executed_sql(cur)
        order = [
            next(i for i, s in enumerate(statements) if s.startswith(f"DELETE FROM {table}"))
            for table in (
                "booking_modifications",
                "bookings",
                "room_availability",
                "event_room_types",
                "room_types",
            )
        ]
        assert order == sorted(order)
        assert counts["bookings"] == 2


class TestDeleteHotel:
    def test_unknown_hotel(self):
        cur = MagicMock()
        cur.fetchone.return_value = None
        with patch.object(cascade, "txn", txn_factory(cur)):
            with pytest.raises(cascade.HotelNotFoundError):
                cascade.delete_hotel(10)

    def test_hotel_deleted_last(self):
        cur = MagicMock()
        cur.fetchone.return_value = (1,)
        cur.fetchall.return_value = [(1,), (2,)]
        cur.rowcount = 0
        with patch.object(cascade, "txn", txn_factory(cur)):
            cascade.delete_hotel(10)

        statements = _executed_sql(cur)
        assert statements[-1] == "DELETE FROM hotels WHERE hotel_id = %s"
        assert any(s.startswith("DELETE FROM event_hotels") for s in statements)

    def test_hotel_without_room_types(self):
        cur = MagicMock()
        cur.fetchone.return_value = (1,)
        cur.fetchall.return_value = []
        with patch.object(cascade, "txn", txn_factory(cur)):
            counts = cascade.delete_hotel(10)
        assert counts == {
            "booking_modifications": 0,
            "bookings": 0,
            "room_availability": 0,
            "room_types": 0,
        }


    def test_failure_rolls_back_whole_cascade(self):
        cur = MagicMock()
        cur.fetchone.return_value = (1,)
        cur.fetchall.return_value = [(1,), (2,)]
        cur.rowcount = 3

        def execute(sql, params=None):
            if sql.startswith("DELETE FROM room_availability"):
                raise psycopg2.OperationalError("connection lost")

        cur.execute.side_effect = execute
        conn = MagicMock()
        conn.cursor.return_value.__enter__.return_value = cur

        with patch("roomblock.infra.db.get_conn", return_value=conn):
            with pytest.raises(psycopg2.OperationalError):
                cascade.delete_hotel(10)

        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()
        conn.close.assert_called_once()
        statements = _executed_sql(cur)
        assert statements[-1].startswith("DELETE FROM room_availability")
        assert not any(
            s.startswith(("DELETE FROM event_room_types", "DELETE FROM room_types", "DELETE FROM hotels"))
            for s in statements
        )


class TestDeletionImpact:
    def test_counts(self):
        cur = MagicMock()
        cur.fetchone.side_effect = [("Grand Hotel",), (2, 10, 4, 1)]
        with patch.object(cascade, "txn", txn_factory(cur)):
            impact = cascade.get_deletion_impact(10)
        assert impact == {
            "hotel_id": 10,
            "hotel_name": "Grand Hotel",
            "room_types": 2,
            "bookings": 10,
            "active_bookings": 4,
            "events": 1,
        }


class TestCreateRoomType:
    def test_zero_rooms_rejected(self):
        with pytest.raises(ValidationError, match="Total rooms"):
            hotels.create_room_type(
                10, name="Double", description=None, total_rooms=0, base_price_per_night=Decimal("90")
            )

    def test_zero_price_rejected(self):
        with pytest.raises(ValidationError, match="Base price"):
            hotels.create_room_type(
                10, name="Double", description=None, total_rooms=3, base_price_per_night=Decimal("0")
            )

    def test_seeds_inventory_from_given_date(self):
        cur = MagicMock()
        cur.fetchone.side_effect = [
            (1,),
            (5, 10, "Double", None, 3, Decimal("90.00"), _NOW, _NOW),
        ]
        with patch.object(hotels, "txn", txn_factory(cur)), patch.object(
            hotels, "seed_inventory_horizon", return_value=366
        ) as seed:
            result = hotels.create_room_type(
                10,
                name="Double",
                description=None,
                total_rooms=3,
                base_price_per_night=Decimal("90"),
                seed_from=date(2024, 1, 1),
            )

        seeded_room_type = seed.call_args.args[1]
        assert seeded_room_type.room_type_id == 5
        assert seeded_room_type.total_rooms == 3
        assert seed.call_args.args[2] == date(2024, 1, 1)
        assert result["base_price_per_night"] == "90.00"


class TestUpdateRoomType:
    def test_no_fields(self):
        with pytest.raises(ValidationError, match="No fields"):
            hotels.update_room_type(10, 1)

    def test_lower_capacity_clamps_future_rows(self):
        cur = MagicMock()
        cur.fetchone.return_value = (1, 10, "Double", None, 2, Decimal("100.00"), _NOW, _NOW)
        with patch.object(hotels, "txn", txn_factory(cur)), patch.object(
            hotels.inventory, "lock_room_type", return_value=room_type(total_rooms=5)
        ), patch.object(hotels.inventory, "clamp_future_overrides", return_value=12) as clamp:
            result = hotels.update_room_type(10, 1, total_rooms=2)

        clamp.assert_called_once_with(cur, 1, 2)
        assert result["total_rooms"] == 2

    def test_higher_capacity_leaves_rows(self):
        cur = MagicMock()
        cur.fetchone.return_value = (1, 10, "Double", None, 8, Decimal("100.00"), _NOW, _NOW)
        with patch.object(hotels, "txn", txn_factory(cur)), patch.object(
            hotels.inventory, "lock_room_type", return_value=room_type(total_rooms=5)
        ), patch.object(hotels.inventory, "clamp_future_overrides") as clamp:
            hotels.update_room_type(10, 1, total_rooms=8)
        clamp.assert_not_called()

    def test_room_type_of_other_hotel(self):
        cur = MagicMock()
        with patch.object(hotels, "txn", txn_factory(cur)), patch.object(
            hotels.inventory, "lock_room_type", return_value=room_type(hotel_id=99)
        ):
            with pytest.raises(cascade.RoomTypeNotInHotelError):
                hotels.update_room_type(10, 1, name="Suite")
