"""Webhook intake: identity, bucket, archive, then buffer or reply."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Literal

from pacelane.chatwoot.models import MessageCreated
from pacelane.domain.buckets import BucketProvisioningError, ensure_bucket
from pacelane.domain.buffers import BufferPolicy, append_message, record_reply
from pacelane.domain.conversations import mark_buffering, upsert_conversation
from pacelane.domain.identity import ResolvedIdentity, phone_candidates, resolve_identity
from pacelane.domain.notifications import error_notice, get_gate
from pacelane.infra.db import txn
from pacelane.infra.hashing import hash_for_log
from pacelane.infra.object_store import ObjectStore, get_object_store
from pacelane.infra.repositories.processed_events import (
    WEBHOOK_SOURCE,
    receipt_exists,
    record_receipt,
)
from pacelane.infra.time import date_path, utc_now
from pacelane.observability.logging import get_logger
from pacelane.observability.redaction import safe_log_context
from pacelane.tasks.client import get_tasks_client

from .scheduling import REPLY_TASK_PATH, schedule_flush

logger = get_logger(__name__)

IngestStatus = Literal["duplicate", "buffered", "reply"]


class IngestionError(Exception):
    """Intake failed at `stage`; the user has been sent an error notice."""

    def __init__(self, stage: str) -> None:
        super().__init__(f"ingestion failed at {stage}")
        self.stage = stage


@dataclass(frozen=True)
class IngestResult:
    status: IngestStatus
    conversation_id: str | None = None
    buffer_id: str | None = None


def raw_message_path(event: MessageCreated) -> str:
    return (
        f"whatsapp-messages/{date_path(event.created_at)}/"
        f"{event.conversation_id}/{event.message_id}.json"
    )


def _provision_storage(
    store: ObjectStore, identity: ResolvedIdentity, event: MessageCreated, raw_payload: dict[str, Any]
) -> None:
    """Ensure the identity's bucket exists and archive the raw event in it."""
    with txn() as cur:
        ensure_bucket(store, identity.bucket_name, cur=cur)
    try:
        store.put(
            identity.bucket_name,
            raw_message_path(event),
            json.dumps(raw_payload, default=str).encode("utf-8"),
            "application/json",
        )
    except Exception as e:
        raise BucketProvisioningError(identity.bucket_name) from e


def ingest_message(
    event: MessageCreated,
    raw_payload: dict[str, Any],
    *,
    correlation_id: str | None = None,
) -> IngestResult:
    """Record an incoming message and schedule its processing.

    The dedupe receipt, conversation update and buffer append commit
    together; tasks are enqueued after commit.

    Raises:
        IngestionError: storage could not be provisioned or the buffer
            write failed (error notice sent).
    """
    now = utc_now()
    log_ctx = safe_log_context(
        correlationId=correlation_id or "",
        message_hash=hash_for_log(event.message_id),
        conversation_hash=hash_for_log(event.conversation_id),
        kind=event.kind,
    )

    # Cheap pre-check so redeliveries skip storage work; the receipt insert
    # below stays authoritative
    with txn() as cur:
        if receipt_exists(cur, WEBHOOK_SOURCE, event.message_id):
            logger.info("duplicate webhook ignored", extra={"extra_fields": log_ctx})
            return IngestResult(status="duplicate")

    identity = resolve_identity(event.contact_key, phone_candidates(event.sender))

    try:
        _provision_storage(get_object_store(), identity, event, raw_payload)
    except BucketProvisioningError as e:
        logger.error("storage provisioning failed", extra={"extra_fields": log_ctx})
        get_gate().send(error_notice(event.account_id, event.conversation_id, "storage"))
        raise IngestionError("storage") from e

    policy = BufferPolicy.from_env()
    try:
        with txn() as cur:
            if not record_receipt(cur, WEBHOOK_SOURCE, event.message_id):
                logger.info("duplicate webhook ignored", extra={"extra_fields": log_ctx})
                return IngestResult(status="duplicate")

            conversation, _ = upsert_conversation(
                cur,
                account_id=event.account_id,
                chatwoot_conversation_id=event.conversation_id,
                identity=identity,
                now=now,
            )

            if conversation.state == "awaiting_clarification":
                record_reply(cur, conversation_id=conversation.id, message=event)
                result = IngestResult(status="reply", conversation_id=conversation.id)
            else:
                appended = append_message(
                    cur,
                    conversation_id=conversation.id,
                    message=event,
                    policy=policy,
                    now=now,
                )
                if conversation.state != "buffering":
                    mark_buffering(cur, conversation)
                result = IngestResult(
                    status="buffered",
                    conversation_id=conversation.id,
                    buffer_id=appended.buffer.buffer_id,
                )
    except Exception as e:
        logger.exception("buffer write failed", extra={"extra_fields": log_ctx})
        get_gate().send(error_notice(event.account_id, event.conversation_id, "storage"))
        raise IngestionError("buffer") from e

    # Enqueue outside the transaction; the sweep covers anything lost here
    tasks_client = get_tasks_client()
    try:
        if result.status == "reply":
            reply_task_id = f"conversation-reply:{event.message_id}"
            tasks_client.enqueue_http(
                task_id=reply_task_id,
                url_path=REPLY_TASK_PATH,
                payload={
                    "task_id": reply_task_id,
                    "conversation_id": result.conversation_id,
                    "message_id": event.message_id,
                },
                correlation_id=correlation_id,
            )
        else:
            schedule_flush(tasks_client, appended, policy, correlation_id)
    except Exception:
        logger.exception("task enqueue failed, sweep will recover", extra={"extra_fields": log_ctx})

    logger.info(
        "message ingested",
        extra={"extra_fields": {**log_ctx, "status": result.status, "anonymous": str(identity.is_anonymous).lower()}},
    )
    return result

