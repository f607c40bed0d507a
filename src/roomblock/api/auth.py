"""Bearer-token authentication for staff users.

Tokens are OIDC JWTs (RS256) verified against the issuer's JWKS; the
subject is then resolved to a row in staff_users.

Provides:
- verify_token(): validates a JWT and returns its subject claim
- get_current_user(): FastAPI dependency returning the acting StaffUser
"""

from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass
from typing import Any

import jwt
import requests
from fastapi import Depends, HTTPException, Request

from roomblock.observability.context import set_actor_id

_jwks_cache: dict[str, Any] | None = None
_jwks_cache_time: float = 0
_jwks_cache_lock = threading.Lock()
_JWKS_CACHE_TTL = 600


@dataclass
class StaffUser:
    """Authenticated staff member."""

    id: str
    external_subject: str
    email: str | None
    name: str | None


def _get_settings() -> dict[str, str | list[str] | None]:
    parties_raw = os.environ.get("OIDC_AUTHORIZED_PARTIES", "")
    parties = [p.strip() for p in parties_raw.split(",") if p.strip()] or None
    return {
        "issuer": os.environ.get("OIDC_ISSUER"),
        "audience": os.environ.get("OIDC_AUDIENCE"),
        "jwks_url": os.environ.get("OIDC_JWKS_URL"),
        "authorized_parties": parties,
    }


def _fetch_jwks(jwks_url: str) -> dict[str, Any]:
    resp = requests.get(jwks_url, timeout=10)
    resp.raise_for_status()
    return resp.json()


def _get_jwks(jwks_url: str, force_refresh: bool = False) -> dict[str, Any]:
    """JWKS document, cached for ten minutes."""
    global _jwks_cache, _jwks_cache_time

    with _jwks_cache_lock:
        now = time.time()
        fresh = _jwks_cache is not None and (now - _jwks_cache_time) < _JWKS_CACHE_TTL
        if fresh and not force_refresh:
            return _jwks_cache

        try:
            _jwks_cache = _fetch_jwks(jwks_url)
        except requests.RequestException:
            raise HTTPException(status_code=503, detail="Auth temporarily unavailable")
        _jwks_cache_time = now
        return _jwks_cache


def _find_key(jwks: dict[str, Any], kid: str) -> dict[str, Any] | None:
    return next((k for k in jwks.get("keys", []) if k.get("kid") == kid), None)


def _decode(token: str, jwk_data: dict[str, Any], issuer: str, audience: str) -> dict[str, Any]:
    try:
        public_key = jwt.algorithms.RSAAlgorithm.from_jwk(jwk_data)
    except (ValueError, TypeError, KeyError):
        raise HTTPException(status_code=401, detail="Invalid token")

    return jwt.decode(
        token,
        public_key,
        algorithms=["RS256"],
        issuer=issuer,
        audience=audience,
        options={"require": ["exp", "iss", "aud", "sub"]},
    )


def verify_token(token: str) -> str:
    """Verify a JWT and return its subject.

    An unknown kid or a bad signature triggers one JWKS refresh, since the
    issuer may have rotated its keys.

    Raises:
        HTTPException: 401 for any invalid token, 503 if the JWKS is unreachable.
    """
    settings = _get_settings()
    issuer = settings["issuer"]
    audience = settings["audience"]
    jwks_url = settings["jwks_url"]
    if not issuer or not audience or not jwks_url:
        raise HTTPException(status_code=401, detail="OIDC not configured")

    try:
        kid = jwt.get_unverified_header(token).get("kid")
    except jwt.exceptions.DecodeError:
        raise HTTPException(status_code=401, detail="Invalid token")
    if not kid:
        raise HTTPException(status_code=401, detail="Invalid token")

    payload: dict[str, Any] | None = None
    for force_refresh in (False, True):
        key_data = _find_key(_get_jwks(jwks_url, force_refresh=force_refresh), kid)
        if key_data is None:
            continue
        try:
            payload = _decode(token, key_data, issuer, audience)
            break
        except jwt.InvalidSignatureError:
            continue
        except jwt.ExpiredSignatureError:
            raise HTTPException(status_code=401, detail="Token expired")
        except jwt.InvalidTokenError:
            raise HTTPException(status_code=401, detail="Invalid token")

    if payload is None:
        raise HTTPException(status_code=401, detail="Invalid token")

    parties = settings["authorized_parties"]
    if parties and "azp" in payload and payload["azp"] not in parties:
        raise HTTPException(status_code=401, detail="Invalid token")

    sub = payload.get("sub")
    if not sub:
        raise HTTPException(status_code=401, detail="Invalid token")
    return sub


def _extract_bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        raise HTTPException(status_code=401, detail="Missing authorization header")

    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token or " " in token.strip():
        raise HTTPException(status_code=401, detail="Invalid authorization header")
    return token.strip()


def _get_staff_user(external_subject: str) -> StaffUser | None:
    from roomblock.infra.db import txn

    with txn() as cur:
        cur.execute(
            "SELECT id, external_subject, email, name FROM staff_users WHERE external_subject = %s",
            (external_subject,),
        )
        row = cur.fetchone()
    if row is None:
        return None
    return StaffUser(id=str(row[0]), external_subject=row[1], email=row[2], name=row[3])


def get_current_user(request: Request) -> StaffUser:
    """FastAPI dependency: the staff user behind the bearer token.

    Raises:
        HTTPException: 401 for a missing/invalid token, 403 for unknown users.
    """
    sub = verify_token(_extract_bearer_token(request))
    user = _get_staff_user(sub)
    if user is None:
        raise HTTPException(status_code=403, detail="User not found")
    set_actor_id(user.id)
    return user


CurrentUserDep = Depends(get_current_user)
