"""Buffer flush: aggregate, classify, route. Plus the periodic sweep.

flush_buffer() is safe to call any number of times for the same buffer;
only the caller that wins the active -> flushing transition does any work.
The sweep is the durable timer: it flushes due buffers whose deferred
check was lost, re-drives unconsumed clarification replies, abandons
stale clarifications and purges finished buffers.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Literal

from pacelane.domain.aggregation import AggregatedUnit, aggregate
from pacelane.domain.buffers import (
    BufferPolicy,
    BufferSnapshot,
    find_due_buffers,
    find_pending_replies,
    load_messages,
    mark_done,
    purge_done_buffers,
    try_begin_flush,
)
from pacelane.domain.classifier import classify
from pacelane.domain.clarification import plan_next
from pacelane.domain.conversations import (
    Conversation,
    begin_clarification,
    clear_clarification,
    find_stale_clarifications,
    get_conversation,
    release_buffering,
)
from pacelane.domain.dispatcher import DispatchError
from pacelane.domain.notifications import (
    error_notice,
    get_gate,
    required_fields,
)
from pacelane.domain.order_params import resolve_order_params
from pacelane.infra.db import txn
from pacelane.infra.hashing import hash_for_log
from pacelane.infra.object_store import get_object_store
from pacelane.infra.repositories.notes_repository import insert_note
from pacelane.infra.repositories.profiles_repository import get_preferences
from pacelane.infra.time import utc_now
from pacelane.llm.openai_client import get_llm_client
from pacelane.observability.logging import get_logger
from pacelane.observability.redaction import safe_log_context

from .orders import ORIGINAL_CONTENT_KEY, complete_order
from .replies import UNDELIVERED_CLARIFICATION, deliver_clarification, handle_reply

logger = get_logger(__name__)

FlushStatus = Literal["skipped", "note", "order", "clarification", "failed"]

DEFAULT_SWEEP_BATCH_SIZE = 20
DEFAULT_CLARIFICATION_TTL_SECONDS = 86400
DEFAULT_BUFFER_RETENTION_HOURS = 24

# Replies younger than this still have their own task in flight
REPLY_GRACE = timedelta(seconds=60)


@dataclass(frozen=True)
class FlushOutcome:
    status: FlushStatus
    buffer_id: str
    reason: str | None = None
    order_id: str | None = None


@dataclass(frozen=True)
class SweepReport:
    flushed: int
    replies: int
    abandoned: int
    purged: int


# ── Flush ─────────────────────────────────────────────────


def flush_buffer(buffer_id: str, *, now: datetime | None = None) -> FlushOutcome:
    """Flush one buffer if it is due and nobody else took it.

    Losing the race, or the buffer not being due yet, is a quiet no-op.
    A processing failure marks the buffer done with the error recorded and
    sends the user one error notice.
    """
    now = now or utc_now()
    policy = BufferPolicy.from_env()

    with txn() as cur:
        snapshot = try_begin_flush(cur, buffer_id, policy, now)
        if snapshot is None:
            logger.info(
                "flush skipped",
                extra={"extra_fields": safe_log_context(buffer_id=buffer_id)},
            )
            return FlushOutcome(status="skipped", buffer_id=buffer_id)
        release_buffering(cur, snapshot.conversation_id)
        conversation = get_conversation(cur, snapshot.conversation_id)
        messages = load_messages(cur, buffer_id)

    log_ctx = safe_log_context(
        buffer_id=buffer_id,
        conversation_hash=hash_for_log(snapshot.conversation_id),
        message_count=len(messages),
    )
    logger.info("buffer flushing", extra={"extra_fields": log_ctx})

    try:
        llm = get_llm_client()
        unit = aggregate(
            buffer_id,
            conversation.id,
            messages,
            bucket_name=conversation.bucket_name,
            store=get_object_store(),
            transcriber=llm,
        )
        classification = classify(unit.text, llm)
        if classification.intent == "note":
            _store_note(conversation, unit, now)
            outcome = FlushOutcome(status="note", buffer_id=buffer_id)
        else:
            outcome = _route_order(conversation, snapshot, unit, classification, now)
    except DispatchError as e:
        # The user already got an error notice from complete_order
        _finish(buffer_id, error=f"dispatch:{e.stage}")
        return FlushOutcome(status="failed", buffer_id=buffer_id, reason=e.stage, order_id=e.order_id)
    except Exception as e:
        logger.exception("buffer processing failed", extra={"extra_fields": log_ctx})
        _finish(buffer_id, error=type(e).__name__)
        get_gate().send(
            error_notice(conversation.account_id, conversation.chatwoot_conversation_id, "processing")
        )
        return FlushOutcome(status="failed", buffer_id=buffer_id, reason="processing")

    logger.info(
        "buffer flushed",
        extra={"extra_fields": {**log_ctx, "status": outcome.status}},
    )
    return outcome


def _finish(buffer_id: str, error: str | None = None) -> None:
    with txn() as cur:
        mark_done(cur, buffer_id, utc_now(), error=error)


def _store_note(conversation: Conversation, unit: AggregatedUnit, now: datetime) -> None:
    with txn() as cur:
        insert_note(
            cur,
            buffer_id=unit.buffer_id,
            conversation_id=conversation.id,
            owner_id=conversation.owner_id,
            content=unit.text,
            attachments=[asdict(a) for a in unit.attachments],
            message_count=unit.message_count,
        )
        mark_done(cur, unit.buffer_id, now)


def _route_order(conversation, snapshot: BufferSnapshot, unit: AggregatedUnit, classification, now) -> FlushOutcome:
    required = required_fields()
    with txn() as cur:
        prefs = get_preferences(cur, conversation.user_id)
    params = resolve_order_params(
        classification.explicit_params,
        classification.inferred_params,
        prefs,
        required,
    )
    step = plan_next(params, required)

    if step.kind == "ask":
        with txn() as cur:
            current = get_conversation(cur, conversation.id, lock=True)
            begin_clarification(
                cur,
                current,
                pending_field=step.field,
                partial_params={**params.to_json(), ORIGINAL_CONTENT_KEY: unit.text},
                buffer_id=snapshot.buffer_id,
                now=now,
            )
        if not deliver_clarification(conversation, step.field):
            _finish(snapshot.buffer_id, error=UNDELIVERED_CLARIFICATION)
            return FlushOutcome(status="failed", buffer_id=snapshot.buffer_id, reason=UNDELIVERED_CLARIFICATION)
        _finish(snapshot.buffer_id)
        return FlushOutcome(status="clarification", buffer_id=snapshot.buffer_id, reason=step.field)

    result = complete_order(
        conversation,
        params,
        buffer_id=snapshot.buffer_id,
        original_content=unit.text,
    )
    _finish(snapshot.buffer_id)
    return FlushOutcome(status="order", buffer_id=snapshot.buffer_id, order_id=result.order_id)


# ── Sweep ─────────────────────────────────────────────────


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, default))


def sweep(now: datetime | None = None) -> SweepReport:
    """One pass of the durable timer. Each item is handled independently."""
    now = now or utc_now()
    policy = BufferPolicy.from_env()
    batch = _env_int("SWEEP_BATCH_SIZE", DEFAULT_SWEEP_BATCH_SIZE)

    with txn() as cur:
        due = find_due_buffers(cur, policy, now, limit=batch)
    flushed = 0
    for buffer_id in due:
        try:
            if flush_buffer(buffer_id, now=now).status != "skipped":
                flushed += 1
        except Exception:
            logger.exception("sweep flush failed", extra={"extra_fields": safe_log_context(buffer_id=buffer_id)})

    with txn() as cur:
        pending = find_pending_replies(cur, now - REPLY_GRACE, limit=batch)
    replies = 0
    for conversation_id, message_id in pending:
        try:
            handle_reply(conversation_id, message_id, now=now)
            replies += 1
        except Exception:
            logger.exception(
                "sweep reply failed",
                extra={"extra_fields": safe_log_context(conversation_hash=hash_for_log(conversation_id))},
            )

    ttl = timedelta(seconds=_env_int("CLARIFICATION_TTL_SECONDS", DEFAULT_CLARIFICATION_TTL_SECONDS))
    with txn() as cur:
        stale = find_stale_clarifications(cur, now - ttl, limit=batch)
        for conversation_id in stale:
            clear_clarification(cur, conversation_id)

    retention = timedelta(hours=_env_int("BUFFER_RETENTION_HOURS", DEFAULT_BUFFER_RETENTION_HOURS))
    with txn() as cur:
        purged = purge_done_buffers(cur, now - retention)

    report = SweepReport(flushed=flushed, replies=replies, abandoned=len(stale), purged=purged)
    logger.info("sweep complete", extra={"extra_fields": safe_log_context(**asdict(report))})
    return report
