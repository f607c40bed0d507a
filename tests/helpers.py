"""Helpers shared by test modules (plain functions, not fixtures)."""

from __future__ import annotations

import base64
import time
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import jwt
from cryptography.hazmat.primitives.asymmetric import rsa

from roomblock.api.auth import StaffUser, get_current_user
from roomblock.infra.repositories.bookings_repository import BookingRecord
from roomblock.infra.repositories.inventory_repository import RoomTypeRecord

OIDC_ENV = {
    "OIDC_ISSUER": "https://auth.example.com",
    "OIDC_AUDIENCE": "roomblock-api",
    "OIDC_JWKS_URL": "https://auth.example.com/.well-known/jwks.json",
}

STAFF_USER = StaffUser(
    id="staff-1",
    external_subject="user-123",
    email="coordinator@example.com",
    name="Test Coordinator",
)


def _generate_rsa_keypair():
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return private_key, private_key.public_key()


def _create_jwks(public_key, kid: str = "test-key-1") -> dict:
    numbers = public_key.public_numbers()

    def int_to_base64(n: int) -> str:
        length = (n.bit_length() + 7) // 8
        return base64.urlsafe_b64encode(n.to_bytes(length, "big")).rstrip(b"=").decode()

    return {
        "keys": [
            {
                "kty": "RSA",
                "use": "sig",
                "alg": "RS256",
                "kid": kid,
                "n": int_to_base64(numbers.n),
                "e": int_to_base64(numbers.e),
            }
        ]
    }


def _create_token(
    private_key,
    kid: str = "test-key-1",
    sub: str = "user-123",
    iss: str = OIDC_ENV["OIDC_ISSUER"],
    aud: str = OIDC_ENV["OIDC_AUDIENCE"],
    exp: int | None = None,
    azp: str | None = None,
) -> str:
    now = int(time.time())
    payload = {"sub": sub, "iss": iss, "aud": aud, "iat": now, "exp": exp if exp is not None else now + 3600}
    if azp:
        payload["azp"] = azp
    return jwt.encode(payload, private_key, algorithm="RS256", headers={"kid": kid})


def authed_app(app, user: StaffUser = STAFF_USER):
    """Bypass token verification; the role lookup is still patched per test."""
    app.dependency_overrides[get_current_user] = lambda: user
    return app


def mock_cursor() -> MagicMock:
    return MagicMock()


@contextmanager
def fake_txn(cur):
    yield cur


def txn_factory(cur):
    """Replacement for infra.db.txn that always yields the same cursor."""
    return lambda *args, **kwargs: fake_txn(cur)


def room_type(
    room_type_id: int = 1,
    hotel_id: int = 10,
    total_rooms: int = 5,
    base_price: str = "100.00",
    name: str = "Double",
) -> RoomTypeRecord:
    return RoomTypeRecord(
        room_type_id=room_type_id,
        hotel_id=hotel_id,
        name=name,
        total_rooms=total_rooms,
        base_price_per_night=Decimal(base_price),
    )


def booking(
    booking_id: int = 100,
    *,
    event_id: int = 7,
    person_id: int = 55,
    room_type_id: int = 1,
    check_in: date = date(2024, 6, 1),
    check_out: date = date(2024, 6, 4),
    total_cost: str = "300.00",
    status: str = "pending",
    payable: bool = True,
) -> BookingRecord:
    ts = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    return BookingRecord(
        booking_id=booking_id,
        event_id=event_id,
        person_id=person_id,
        room_type_id=room_type_id,
        check_in_date=check_in,
        check_out_date=check_out,
        total_cost=Decimal(total_cost),
        payable=payable,
        status=status,
        modification_type=None,
        modification_date=None,
        created_at=ts,
        updated_at=ts,
    )
