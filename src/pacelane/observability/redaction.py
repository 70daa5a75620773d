"""Redaction for log values.

Chatwoot payloads carry phone numbers, WhatsApp JIDs, message text and
signed attachment URLs. None of it may reach the logs; anything logged
goes through safe_log_context().
"""

import re
from typing import Any

_JID_PATTERN = re.compile(r"\b\d{8,}@[a-z.]+\b")
_PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-()]{8,}\d")
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
# Attachment URLs embed signed blob ids; keep scheme and host only
_URL_PATTERN = re.compile(r"(https?://[^/\s?#]*)[^\s]*")
_TOKEN_PATTERN = re.compile(r"(api_access_token|token|secret)=([^&\s]+)", re.IGNORECASE)

_REDACTED = "[REDACTED]"

# Longer strings are most likely message text
MAX_LOGGED_STRING = 200


def _strip_url(match: re.Match[str]) -> str:
    origin = match.group(1)
    return origin if match.group(0) == origin else f"{origin}/{_REDACTED}"


def redact_string(value: str) -> str:
    """Redact PII and credentials from a string; long text is summarized."""
    if len(value) > MAX_LOGGED_STRING:
        return f"str(len={len(value)})"
    result = _TOKEN_PATTERN.sub(lambda m: f"{m.group(1)}={_REDACTED}", value)
    result = _URL_PATTERN.sub(_strip_url, result)
    result = _JID_PATTERN.sub(_REDACTED, result)
    result = _PHONE_PATTERN.sub(_REDACTED, result)
    result = _EMAIL_PATTERN.sub(_REDACTED, result)
    return result


def redact_value(value: Any) -> str:
    """Redact any value for safe logging. Returns string representation."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, dict):
        # Structure only, never values
        return f"dict(keys={sorted(str(k) for k in value)})"
    if isinstance(value, (list, tuple, set, frozenset)):
        return f"list(len={len(value)})"
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build a context dict safe for logging. All values are redacted."""
    return {k: redact_value(v) for k, v in kwargs.items()}
