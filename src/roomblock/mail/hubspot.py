"""Transactional guest email via the HubSpot single-send API.

Security: NEVER log recipient addresses or guest names in clear.
Only masked addresses (mask_email) go to the logs.
"""

import os
from dataclasses import dataclass

import requests

from roomblock.observability.logging import get_logger
from roomblock.observability.redaction import mask_email, safe_log_context

logger = get_logger(__name__)

DEFAULT_API_BASE_URL = "https://api.hubapi.com"
SINGLE_SEND_PATH = "/marketing/v3/transactional/single-email/send"
DEFAULT_HTTP_TIMEOUT = 10


class EmailSendError(Exception):
    """Raised when an email could not be handed to the provider."""

    pass


@dataclass(frozen=True)
class EmailMessage:
    to: str
    first_name: str | None = None
    last_name: str | None = None
    ticket_id: str | None = None


def _get_config() -> dict:
    """Read HubSpot settings from the environment.

    Required:
    - HUBSPOT_API_KEY: private app token
    - HUBSPOT_EMAIL_TEMPLATE_ID: transactional email id

    Optional:
    - HUBSPOT_API_BASE_URL (default: https://api.hubapi.com)
    - EMAIL_HTTP_TIMEOUT seconds (default: 10)
    - EMAIL_REDIRECT_TO: deliver every message to this address instead
      (staging); the intended recipient is still recorded.
    """
    api_key = os.environ.get("HUBSPOT_API_KEY", "")
    template_id = os.environ.get("HUBSPOT_EMAIL_TEMPLATE_ID", "")
    if not api_key or not template_id:
        raise EmailSendError(
            "Missing email config: HUBSPOT_API_KEY and HUBSPOT_EMAIL_TEMPLATE_ID required"
        )

    try:
        timeout = float(os.environ.get("EMAIL_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT))
    except ValueError:
        timeout = DEFAULT_HTTP_TIMEOUT

    return {
        "api_key": api_key,
        "template_id": template_id,
        "base_url": os.environ.get("HUBSPOT_API_BASE_URL", DEFAULT_API_BASE_URL).rstrip("/"),
        "timeout": timeout,
        "redirect_to": os.environ.get("EMAIL_REDIRECT_TO") or None,
    }


def build_payload(message: EmailMessage, template_id: str, redirect_to: str | None = None) -> dict:
    return {
        "emailId": int(template_id) if template_id.isdigit() else template_id,
        "message": {"to": redirect_to or message.to},
        "customProperties": {
            "first_name": message.first_name or "",
            "last_name": message.last_name or "",
            "ticket_id": message.ticket_id or "",
        },
    }


def send_email(message: EmailMessage, *, correlation_id: str | None = None) -> str | None:
    """Send one templated email.

    Returns:
        Provider status id (requestId or id), if the response carries one.

    Raises:
        EmailSendError: Missing config, network error or non-2xx response.
    """
    if not message.to:
        raise EmailSendError("Recipient email is required")

    config = _get_config()
    url = f"{config['base_url']}{SINGLE_SEND_PATH}"
    payload = build_payload(message, config["template_id"], config["redirect_to"])

    log_ctx = safe_log_context(
        correlationId=correlation_id or "",
        to=mask_email(message.to),
        redirected=config["redirect_to"] is not None,
        provider="hubspot",
    )
    logger.info("sending guest email", extra={"extra_fields": log_ctx})

    try:
        resp = requests.post(
            url,
            json=payload,
            headers={
                "Authorization": f"Bearer {config['api_key']}",
                "Content-Type": "application/json",
            },
            timeout=config["timeout"],
        )
    except requests.RequestException as e:
        logger.warning(
            "guest email request failed",
            extra={"extra_fields": safe_log_context(**log_ctx, error_type=type(e).__name__)},
        )
        raise EmailSendError(f"Email request failed: {type(e).__name__}") from e

    if not 200 <= resp.status_code < 300:
        logger.warning(
            "guest email rejected",
            extra={"extra_fields": safe_log_context(**log_ctx, status_code=resp.status_code)},
        )
        raise EmailSendError(f"Email provider returned HTTP {resp.status_code}")

    try:
        body = resp.json()
    except ValueError:
        body = {}

    status_id = body.get("requestId") or body.get("id") if isinstance(body, dict) else None
    logger.info(
        "guest email sent",
        extra={"extra_fields": safe_log_context(**log_ctx, status_id=status_id)},
    )
    return str(status_id) if status_id is not None else None
