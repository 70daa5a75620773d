"""Outbound messages to a Chatwoot conversation.

Security: NEVER log message text or contact data. Only hashes and lengths.
"""

import os
import time
from dataclasses import dataclass
from typing import Any, Sequence

import requests

from pacelane.infra.hashing import hash_for_log
from pacelane.observability.logging import get_logger
from pacelane.observability.redaction import safe_log_context

logger = get_logger(__name__)

HTTP_TIMEOUT = 10

MAX_RETRIES = 1
RETRY_DELAY = 0.2


@dataclass(frozen=True)
class QuickReply:
    """A selectable choice rendered by Chatwoot as an input_select item."""

    label: str
    value: str


def _get_config() -> dict[str, str]:
    """Read Chatwoot config from the environment.

    Required env vars:
    - CHATWOOT_BASE_URL: e.g. https://app.chatwoot.com
    - CHATWOOT_API_TOKEN: agent/bot access token
    """
    base_url = os.environ.get("CHATWOOT_BASE_URL", "").rstrip("/")
    api_token = os.environ.get("CHATWOOT_API_TOKEN", "")
    if not base_url or not api_token:
        raise RuntimeError(
            "Missing Chatwoot config: CHATWOOT_BASE_URL and CHATWOOT_API_TOKEN required"
        )
    return {"base_url": base_url, "api_token": api_token}


def build_message_body(content: str, options: Sequence[QuickReply] | None = None) -> dict[str, Any]:
    """Chatwoot message body; options become an input_select menu."""
    body: dict[str, Any] = {
        "content": content,
        "message_type": "outgoing",
        "private": False,
    }
    if options:
        body["content_type"] = "input_select"
        body["content_attributes"] = {
            "items": [{"title": o.label, "value": o.value} for o in options]
        }
    else:
        body["content_type"] = "text"
    return body


def _do_request(url: str, body: dict[str, Any], headers: dict[str, str]) -> dict[str, Any]:
    """POST and return the decoded JSON body. Raises on HTTP errors."""
    response = requests.post(url, json=body, headers=headers, timeout=HTTP_TIMEOUT)
    response.raise_for_status()
    return response.json() if response.content else {}


def _is_retryable(exc: requests.RequestException) -> bool:
    if isinstance(exc, requests.HTTPError):
        status = exc.response.status_code if exc.response is not None else 0
        return status >= 500 or status == 429
    return isinstance(exc, (requests.ConnectionError, requests.Timeout))


def send_message(
    *,
    account_id: str,
    conversation_id: str,
    content: str,
    options: Sequence[QuickReply] | None = None,
) -> dict[str, Any]:
    """Send a message into a Chatwoot conversation.

    Retries once on network errors, 429 and 5xx.

    Raises:
        RuntimeError: If config is missing.
        requests.RequestException: On failure after retry.
    """
    config = _get_config()
    url = (
        f"{config['base_url']}/api/v1/accounts/{account_id}"
        f"/conversations/{conversation_id}/messages"
    )
    headers = {
        "Content-Type": "application/json",
        "api_access_token": config["api_token"],
    }
    body = build_message_body(content, options)

    log_ctx = safe_log_context(
        conversation_hash=hash_for_log(conversation_id),
        text_len=len(content),
        option_count=len(options or ()),
    )

    for attempt in range(MAX_RETRIES + 1):
        try:
            result = _do_request(url, body, headers)
            logger.info(
                "chatwoot message sent",
                extra={"extra_fields": {**log_ctx, "attempt": str(attempt)}},
            )
            return result
        except requests.RequestException as e:
            if attempt < MAX_RETRIES and _is_retryable(e):
                logger.warning(
                    "chatwoot send failed, retrying",
                    extra={"extra_fields": {**log_ctx, "attempt": str(attempt), "error_type": type(e).__name__}},
                )
                time.sleep(RETRY_DELAY)
                continue
            logger.error(
                "chatwoot send failed",
                extra={"extra_fields": {**log_ctx, "attempt": str(attempt), "error_type": type(e).__name__}},
            )
            raise
    raise AssertionError("unreachable")
