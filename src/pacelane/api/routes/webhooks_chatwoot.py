"""Chatwoot webhook route.

Chatwoot posts every account event here. Only incoming WhatsApp messages
reach the pipeline; the rest is acknowledged and dropped. Message text and
phone numbers exist only in memory and in the user's bucket, never in logs
or task payloads.
"""

import hmac
import os
from typing import Any

from fastapi import APIRouter, Query, Request, Response

from pacelane.chatwoot.adapter import InvalidPayloadError, parse_event
from pacelane.chatwoot.models import IgnoredEvent
from pacelane.infra.hashing import hash_for_log
from pacelane.observability.correlation import get_correlation_id
from pacelane.observability.logging import get_logger
from pacelane.observability.redaction import safe_log_context
from pacelane.services.ingestion import IngestionError, ingest_message

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

logger = get_logger(__name__)


def _token_ok(token: str | None) -> bool:
    """Compare the query token with CHATWOOT_WEBHOOK_SECRET (if configured)."""
    expected = os.environ.get("CHATWOOT_WEBHOOK_SECRET", "")
    if not expected:
        return True
    return hmac.compare_digest(token or "", expected)


@router.post("/chatwoot")
async def chatwoot_webhook(request: Request, token: str | None = Query(None)) -> Response:
    """Receive a Chatwoot webhook event.

    Returns:
        200 "ok" when buffered or recorded as a clarification reply,
        200 "ignored" / "duplicate" when nothing new happened,
        400 on invalid JSON or a malformed message payload,
        401 on a bad webhook token,
        500 when storage could not be provisioned (Chatwoot may redeliver).
    """
    correlation_id = get_correlation_id()

    if not _token_ok(token):
        logger.warning(
            "chatwoot webhook token mismatch",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=401, content="unauthorized")

    try:
        payload: dict[str, Any] = await request.json()
    except Exception:
        logger.warning(
            "invalid json body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=400, content="invalid json")

    try:
        event = parse_event(payload)
    except InvalidPayloadError as e:
        logger.warning(
            "malformed chatwoot payload",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, error=str(e))},
        )
        return Response(status_code=400, content="invalid payload")

    if isinstance(event, IgnoredEvent):
        logger.debug(
            "chatwoot event ignored",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id, event=event.event, reason=event.reason
                )
            },
        )
        return Response(status_code=200, content="ignored")

    logger.info(
        "chatwoot message received",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                message_hash=hash_for_log(event.message_id),
                kind=event.kind,
                text_len=len(event.content),
                attachment_count=len(event.attachments),
            )
        },
    )

    try:
        result = ingest_message(event, payload, correlation_id=correlation_id)
    except IngestionError as e:
        return Response(status_code=500, content=f"{e.stage} unavailable")
    except Exception:
        logger.exception(
            "chatwoot webhook processing failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=500, content="processing failed")

    if result.status == "duplicate":
        return Response(status_code=200, content="duplicate")
    return Response(status_code=200, content="ok")
