"""Attachment download from Chatwoot storage."""

import os

import requests

from pacelane.observability.logging import get_logger
from pacelane.observability.redaction import safe_log_context

logger = get_logger(__name__)

HTTP_TIMEOUT = 30
DEFAULT_MAX_ATTACHMENT_BYTES = 25 * 1024 * 1024


class AttachmentTooLargeError(Exception):
    """Raised when an attachment exceeds MAX_ATTACHMENT_BYTES."""

    pass


def _max_bytes() -> int:
    return int(os.environ.get("MAX_ATTACHMENT_BYTES", DEFAULT_MAX_ATTACHMENT_BYTES))


def download_attachment(url: str) -> tuple[bytes, str | None]:
    """Download an attachment, returning (bytes, content-type header).

    Raises:
        AttachmentTooLargeError: If the body exceeds the configured limit.
        requests.RequestException: On network/HTTP errors.
    """
    limit = _max_bytes()
    headers = {}
    token = os.environ.get("CHATWOOT_API_TOKEN")
    if token:
        headers["api_access_token"] = token

    with requests.get(url, headers=headers, timeout=HTTP_TIMEOUT, stream=True) as response:
        response.raise_for_status()
        chunks = []
        total = 0
        for chunk in response.iter_content(chunk_size=64 * 1024):
            total += len(chunk)
            if total > limit:
                raise AttachmentTooLargeError(f"attachment exceeds {limit} bytes")
            chunks.append(chunk)
        content_type = response.headers.get("Content-Type")

    logger.info(
        "attachment downloaded",
        extra={"extra_fields": safe_log_context(size=total, content_type=content_type)},
    )
    return b"".join(chunks), content_type
