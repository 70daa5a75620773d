"""Conversation state per Chatwoot thread.

States: idle -> buffering -> idle, and idle -> awaiting_clarification -> idle.
A conversation awaiting clarification has exactly one pending field and the
partial order parameters collected so far. Rows are never deleted.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from psycopg2.extensions import cursor as PgCursor

from .identity import ResolvedIdentity

ConversationState = Literal["idle", "buffering", "awaiting_clarification"]

VALID_STATES: set[str] = {"idle", "buffering", "awaiting_clarification"}

# Allowed (from, to) moves; same-state updates are always fine
STATE_TRANSITIONS: dict[str, set[str]] = {
    "idle": {"buffering", "awaiting_clarification"},
    "buffering": {"idle", "awaiting_clarification"},
    "awaiting_clarification": {"idle", "buffering"},
}


class InvalidTransitionError(Exception):
    pass


def check_transition(current: str, target: str) -> None:
    if target not in VALID_STATES:
        raise InvalidTransitionError(f"unknown state {target!r}")
    if current != target and target not in STATE_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(f"{current} -> {target} not allowed")


@dataclass(frozen=True)
class Conversation:
    id: str
    chatwoot_conversation_id: str
    account_id: str
    contact_key: str
    user_id: str | None
    bucket_name: str
    state: ConversationState
    pending_field: str | None
    partial_params: dict[str, Any] = field(default_factory=dict)
    clarification_buffer_id: str | None = None
    clarification_started_at: datetime | None = None
    last_activity_at: datetime | None = None

    @property
    def owner_id(self) -> str:
        return self.user_id or f"contact_{self.contact_key}"


_COLUMNS = """
    id, chatwoot_conversation_id, account_id, contact_key, user_id, bucket_name,
    state, pending_field, partial_params, clarification_buffer_id,
    clarification_started_at, last_activity_at
"""


def _from_row(row: tuple[Any, ...]) -> Conversation:
    return Conversation(
        id=str(row[0]),
        chatwoot_conversation_id=row[1],
        account_id=row[2],
        contact_key=row[3],
        user_id=row[4],
        bucket_name=row[5],
        state=row[6],
        pending_field=row[7],
        partial_params=dict(row[8] or {}),
        clarification_buffer_id=str(row[9]) if row[9] else None,
        clarification_started_at=row[10],
        last_activity_at=row[11],
    )


def upsert_conversation(
    cur: PgCursor,
    *,
    account_id: str,
    chatwoot_conversation_id: str,
    identity: ResolvedIdentity,
    now: datetime,
) -> tuple[Conversation, bool]:
    """Lock or create the conversation for a Chatwoot thread.

    The row stays locked until the caller's transaction ends, which
    serializes message handling per conversation. A known user id is
    never replaced by an anonymous one.

    Returns:
        (conversation, created)
    """
    cur.execute(
        f"""
        SELECT {_COLUMNS} FROM conversations
        WHERE account_id = %s AND chatwoot_conversation_id = %s
        FOR UPDATE
        """,
        (account_id, chatwoot_conversation_id),
    )
    row = cur.fetchone()

    if row is None:
        cur.execute(
            f"""
            INSERT INTO conversations
                (chatwoot_conversation_id, account_id, contact_key, user_id, bucket_name,
                 state, last_activity_at)
            VALUES (%s, %s, %s, %s, %s, 'idle', %s)
            ON CONFLICT (account_id, chatwoot_conversation_id) DO NOTHING
            RETURNING {_COLUMNS}
            """,
            (
                chatwoot_conversation_id,
                account_id,
                identity.contact_key,
                identity.user_id,
                identity.bucket_name,
                now,
            ),
        )
        inserted = cur.fetchone()
        if inserted is not None:
            return _from_row(inserted), True
        # Created concurrently; lock the winner's row
        return upsert_conversation(
            cur,
            account_id=account_id,
            chatwoot_conversation_id=chatwoot_conversation_id,
            identity=identity,
            now=now,
        )

    cur.execute(
        f"""
        UPDATE conversations
        SET user_id = COALESCE(user_id, %s),
            bucket_name = CASE WHEN user_id IS NULL AND %s IS NOT NULL THEN %s ELSE bucket_name END,
            last_activity_at = GREATEST(last_activity_at, %s),
            updated_at = now()
        WHERE id = %s
        RETURNING {_COLUMNS}
        """,
        (identity.user_id, identity.user_id, identity.bucket_name, now, row[0]),
    )
    return _from_row(cur.fetchone()), False


def get_conversation(cur: PgCursor, conversation_id: str, *, lock: bool = False) -> Conversation | None:
    query = f"SELECT {_COLUMNS} FROM conversations WHERE id = %s"
    if lock:
        query += " FOR UPDATE"
    cur.execute(query, (conversation_id,))
    row = cur.fetchone()
    return _from_row(row) if row else None


def mark_buffering(cur: PgCursor, conversation: Conversation) -> None:
    check_transition(conversation.state, "buffering")
    cur.execute(
        "UPDATE conversations SET state = 'buffering', updated_at = now() WHERE id = %s",
        (conversation.id,),
    )


def release_buffering(cur: PgCursor, conversation_id: str) -> None:
    """buffering -> idle, unless a newer buffer is already collecting messages."""
    cur.execute(
        """
        UPDATE conversations c
        SET state = 'idle', updated_at = now()
        WHERE c.id = %s
          AND c.state = 'buffering'
          AND NOT EXISTS (
              SELECT 1 FROM message_buffers b
              WHERE b.conversation_id = c.id AND b.status = 'active'
          )
        """,
        (conversation_id,),
    )


def begin_clarification(
    cur: PgCursor,
    conversation: Conversation,
    *,
    pending_field: str,
    partial_params: dict[str, Any],
    buffer_id: str | None,
    now: datetime,
) -> None:
    """Enter (or stay in) awaiting_clarification with one field in flight.

    A buffer_id means a new order is asking, so its start time restarts the
    TTL; follow-up questions (buffer_id None) keep the original start.
    """
    check_transition(conversation.state, "awaiting_clarification")
    restart_at = now if buffer_id is not None else None
    cur.execute(
        """
        UPDATE conversations
        SET state = 'awaiting_clarification',
            pending_field = %s,
            partial_params = %s::jsonb,
            clarification_buffer_id = COALESCE(%s, clarification_buffer_id),
            clarification_started_at = COALESCE(%s, clarification_started_at, %s),
            updated_at = now()
        WHERE id = %s
        """,
        (pending_field, json.dumps(partial_params), buffer_id, restart_at, now, conversation.id),
    )


def clear_clarification(cur: PgCursor, conversation_id: str) -> None:
    """Back to idle, dropping the pending field and partial parameters."""
    cur.execute(
        """
        UPDATE conversations
        SET state = 'idle',
            pending_field = NULL,
            partial_params = '{}'::jsonb,
            clarification_buffer_id = NULL,
            clarification_started_at = NULL,
            updated_at = now()
        WHERE id = %s AND state = 'awaiting_clarification'
        """,
        (conversation_id,),
    )


def find_stale_clarifications(cur: PgCursor, older_than: datetime, limit: int = 100) -> list[str]:
    cur.execute(
        """
        SELECT id FROM conversations
        WHERE state = 'awaiting_clarification' AND clarification_started_at < %s
        ORDER BY clarification_started_at
        LIMIT %s
        """,
        (older_than, limit),
    )
    return [str(row[0]) for row in cur.fetchall()]
