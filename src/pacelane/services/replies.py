"""Clarification replies.

A message that arrives while its conversation awaits clarification is not
buffered or classified. It is read as the answer to the pending field.
If the conversation stopped waiting in the meantime (answered by an
earlier reply, abandoned by the sweep) the message joins the normal
buffer flow instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from pacelane.domain.aggregation import aggregate
from pacelane.domain.buffers import (
    BufferPolicy,
    BufferedMessage,
    adopt_reply,
    consume_reply,
    load_reply,
)
from pacelane.domain.clarification import apply_reply
from pacelane.domain.conversations import (
    Conversation,
    begin_clarification,
    clear_clarification,
    get_conversation,
    mark_buffering,
)
from pacelane.domain.dispatcher import DispatchError
from pacelane.domain.notifications import clarification_notice, get_gate, required_fields
from pacelane.domain.order_params import params_from_json
from pacelane.infra.db import txn
from pacelane.infra.hashing import hash_for_log
from pacelane.infra.object_store import get_object_store
from pacelane.infra.time import utc_now
from pacelane.llm.openai_client import get_llm_client
from pacelane.observability.logging import get_logger
from pacelane.observability.redaction import safe_log_context
from pacelane.tasks.client import get_tasks_client

from .orders import ORIGINAL_CONTENT_KEY, complete_order
from .scheduling import schedule_flush

logger = get_logger(__name__)

ReplyStatus = Literal["unknown", "duplicate", "asked", "completed", "cancelled", "adopted", "failed"]
UNDELIVERED_CLARIFICATION = "clarification_undelivered"


@dataclass(frozen=True)
class ReplyOutcome:
    status: ReplyStatus
    field: str | None = None
    order_id: str | None = None


def deliver_clarification(conversation: Conversation, field: str) -> bool:
    """Ask for a missing field. A question that never reached the user must
    not capture their next message, so the conversation goes back to idle.
    """
    delivered = get_gate().send(
        clarification_notice(conversation.account_id, conversation.chatwoot_conversation_id, field)
    )
    if not delivered:
        with txn() as cur:
            clear_clarification(cur, conversation.id)
        logger.warning(
            "clarification undelivered, conversation released",
            extra={"extra_fields": {"conversation_id": conversation.id, "field": field}},
        )
    return bool(delivered)


def _answer_text(conversation: Conversation, message: BufferedMessage) -> str:
    """Reply text; voice replies are transcribed, attachments archived."""
    if not message.attachments:
        return message.content.strip()
    llm = get_llm_client()
    unit = aggregate(
        None,
        conversation.id,
        [message],
        bucket_name=conversation.bucket_name,
        store=get_object_store(),
        transcriber=llm,
    )
    return unit.text


def handle_reply(
    conversation_id: str,
    message_id: str,
    *,
    now: datetime | None = None,
    correlation_id: str | None = None,
) -> ReplyOutcome:
    """Consume one recorded reply. Safe to run more than once per message."""
    now = now or utc_now()
    log_ctx = safe_log_context(
        conversation_hash=hash_for_log(conversation_id),
        message_hash=hash_for_log(message_id),
    )

    with txn() as cur:
        loaded = load_reply(cur, message_id)
        conversation = get_conversation(cur, conversation_id)
    if loaded is None or conversation is None:
        logger.warning("reply not found", extra={"extra_fields": log_ctx})
        return ReplyOutcome(status="unknown")
    message, consumed = loaded
    if consumed:
        return ReplyOutcome(status="duplicate")

    # Network work happens before taking the conversation lock
    answer = _answer_text(conversation, message)

    policy = BufferPolicy.from_env()
    with txn() as cur:
        current = get_conversation(cur, conversation_id, lock=True)

        if current.state != "awaiting_clarification":
            appended = adopt_reply(
                cur, conversation_id=conversation_id, message_id=message_id, policy=policy, now=now
            )
            if not appended.appended:
                return ReplyOutcome(status="duplicate")
            if current.state != "buffering":
                mark_buffering(cur, current)
            adopted = appended
            step = None
        else:
            if not consume_reply(cur, message_id, now):
                return ReplyOutcome(status="duplicate")
            adopted = None
            step = apply_reply(
                params_from_json(current.partial_params),
                current.pending_field,
                answer,
                required_fields(),
            )
            if step.kind == "ask":
                begin_clarification(
                    cur,
                    current,
                    pending_field=step.field,
                    partial_params={
                        **step.params.to_json(),
                        ORIGINAL_CONTENT_KEY: current.partial_params.get(ORIGINAL_CONTENT_KEY, ""),
                    },
                    buffer_id=None,
                    now=now,
                )
            else:
                clear_clarification(cur, conversation_id)

    if adopted is not None:
        try:
            schedule_flush(get_tasks_client(), adopted, policy, correlation_id)
        except Exception:
            logger.exception("task enqueue failed, sweep will recover", extra={"extra_fields": log_ctx})
        logger.info("reply joined buffer", extra={"extra_fields": log_ctx})
        return ReplyOutcome(status="adopted")

    if step.kind == "cancel":
        logger.info("clarification cancelled", extra={"extra_fields": log_ctx})
        return ReplyOutcome(status="cancelled", field=step.field)

    if step.kind == "ask":
        if not deliver_clarification(current, step.field):
            return ReplyOutcome(status="failed", field=step.field)
        logger.info("clarification asked", extra={"extra_fields": {**log_ctx, "field": step.field}})
        return ReplyOutcome(status="asked", field=step.field)

    if current.clarification_buffer_id is None:
        logger.error("clarification without source buffer", extra={"extra_fields": log_ctx})
        return ReplyOutcome(status="failed")
    try:
        result = complete_order(
            current,
            step.params,
            buffer_id=current.clarification_buffer_id,
            original_content=current.partial_params.get(ORIGINAL_CONTENT_KEY, ""),
        )
    except DispatchError as e:
        return ReplyOutcome(status="failed", order_id=e.order_id)
    logger.info("clarification completed", extra={"extra_fields": log_ctx})
    return ReplyOutcome(status="completed", order_id=result.order_id)
