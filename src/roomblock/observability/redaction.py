"""Redaction helpers so guest PII never reaches the logs."""

import re
from typing import Any

_EMAIL_PATTERN = re.compile(r"([a-zA-Z0-9._%+-]+)@([a-zA-Z0-9.-]+\.[a-zA-Z]{2,})")
_PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-()]{8,}\d")

_REDACTED = "[REDACTED]"


def mask_email(address: str | None) -> str:
    """Keep the domain, hide the mailbox: 'ana@acme.io' -> '***@acme.io'."""
    if not address:
        return "null"
    match = _EMAIL_PATTERN.fullmatch(address.strip())
    if match is None:
        return _REDACTED
    return f"***@{match.group(2)}"


def redact_string(value: str) -> str:
    result = _EMAIL_PATTERN.sub(lambda m: f"***@{m.group(2)}", value)
    return _PHONE_PATTERN.sub(_REDACTED, result)


def redact_value(value: Any) -> Any:
    """Make a value safe to log.

    Numbers and booleans pass through; strings are scrubbed; containers are
    reduced to their shape.
    """
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, dict):
        return f"dict(keys={sorted(value.keys())})"
    if isinstance(value, (list, tuple)):
        return f"list(len={len(value)})"
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, Any]:
    """Build an extra_fields dict with every value redacted."""
    return {k: redact_value(v) for k, v in kwargs.items()}
