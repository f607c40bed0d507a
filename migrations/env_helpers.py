"""Database URL resolution for Alembic.

Kept apart from env.py so it can be imported in tests without an active
alembic context.
"""

from __future__ import annotations

import os
import re
from urllib.parse import quote_plus, urlsplit, urlunsplit

_DSN_TOKEN = re.compile(r"(\w+)\s*=\s*('(?:[^'\\]|\\.)*'|\S+)")
_ESCAPE = re.compile(r"\\(.)")


def parse_libpq_dsn(dsn: str) -> dict[str, str]:
    """Split a key=value libpq DSN. Single-quoted values may hold spaces and \\-escapes."""
    tokens: dict[str, str] = {}
    for key, raw in _DSN_TOKEN.findall(dsn):
        if raw.startswith("'") and raw.endswith("'") and len(raw) >= 2:
            raw = _ESCAPE.sub(r"\1", raw[1:-1])
        tokens[key] = raw
    return tokens


def libpq_dsn_to_url(dsn: str) -> str:
    """Turn a libpq DSN into a SQLAlchemy psycopg2 URL.

    A host starting with "/" is a unix socket directory and goes to the
    query string.
    """
    tokens = parse_libpq_dsn(dsn)
    password = tokens.get("password") or os.environ.get("DB_PASSWORD", "")

    credentials = f"{quote_plus(tokens.get('user', ''))}:{quote_plus(password)}"
    dbname = quote_plus(tokens.get("dbname", ""))
    host = tokens.get("host", "localhost")

    if host.startswith("/"):
        return f"postgresql+psycopg2://{credentials}@/{dbname}?host={quote_plus(host)}"
    return f"postgresql+psycopg2://{credentials}@{host}:{tokens.get('port', '5432')}/{dbname}"


def get_database_url() -> str:
    """DATABASE_URL as a SQLAlchemy URL, with DB_PASSWORD filled in if missing."""
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    if "://" not in url:
        return libpq_dsn_to_url(url)

    scheme, rest = url.split("://", 1)
    if scheme in ("postgres", "postgresql"):
        url = f"postgresql+psycopg2://{rest}"

    password = os.environ.get("DB_PASSWORD", "")
    parts = urlsplit(url)
    if password and not parts.password:
        netloc = f"{quote_plus(parts.username or '')}:{quote_plus(password)}@{parts.hostname}"
        if parts.port:
            netloc += f":{parts.port}"
        url = urlunsplit(parts._replace(netloc=netloc))
    return url
