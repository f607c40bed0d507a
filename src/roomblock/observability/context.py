"""Request-scoped context (correlation ID and acting staff user) for tracing."""

import uuid
from contextvars import ContextVar, Token

CORRELATION_ID_HEADER = "X-Correlation-ID"

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")
actor_id_var: ContextVar[str] = ContextVar("actor_id", default="")


def generate_correlation_id() -> str:
    return uuid.uuid4().hex


def get_correlation_id() -> str:
    return correlation_id_var.get()


def set_correlation_id(cid: str) -> Token[str]:
    return correlation_id_var.set(cid)


def reset_correlation_id(token: Token[str]) -> None:
    correlation_id_var.reset(token)


def get_actor_id() -> str:
    """ID of the staff user acting in the current request, or empty."""
    return actor_id_var.get()


def set_actor_id(user_id: str) -> Token[str]:
    return actor_id_var.set(user_id)
