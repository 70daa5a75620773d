"""Per-conversation message buffer.

A buffer collects rapid-fire messages from one conversation and is flushed
as a single unit once the conversation goes quiet, or earlier when a size or
age ceiling is reached. Status moves active -> flushing -> done and never
back; a message arriving after the flush opens a new buffer.

No timer lives in-process. Every append schedules a deferred check and a
periodic sweep re-checks all active buffers; both end in try_begin_flush(),
a conditional UPDATE that re-evaluates the due condition and flips
active -> flushing for exactly one caller.
"""

import json
import os
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Literal

from psycopg2.extensions import cursor as PgCursor

from pacelane.chatwoot.models import MessageCreated

BufferStatus = Literal["active", "flushing", "done"]
FlushReason = Literal["quiet", "size", "age"]

DEFAULT_QUIET_WINDOW_SECONDS = 30
DEFAULT_MAX_MESSAGES = 50
DEFAULT_MAX_AGE_SECONDS = 300


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class BufferPolicy:
    quiet_window: timedelta
    max_messages: int
    max_age: timedelta

    @classmethod
    def from_env(cls) -> "BufferPolicy":
        """Read BUFFER_* env vars. BUFFERING_ENABLED=false flushes every message alone."""
        max_messages = int(os.environ.get("BUFFER_MAX_MESSAGES", DEFAULT_MAX_MESSAGES))
        if not _env_bool("BUFFERING_ENABLED", True):
            max_messages = 1
        return cls(
            quiet_window=timedelta(
                seconds=float(os.environ.get("BUFFER_QUIET_WINDOW_SECONDS", DEFAULT_QUIET_WINDOW_SECONDS))
            ),
            max_messages=max_messages,
            max_age=timedelta(
                seconds=float(os.environ.get("BUFFER_MAX_AGE_SECONDS", DEFAULT_MAX_AGE_SECONDS))
            ),
        )


@dataclass(frozen=True)
class BufferSnapshot:
    buffer_id: str
    conversation_id: str
    status: BufferStatus
    window_start_at: datetime
    last_message_at: datetime
    message_count: int

    def with_message(self, now: datetime) -> "BufferSnapshot":
        """Snapshot after one more append at `now` (window start unchanged)."""
        return replace(
            self,
            last_message_at=max(self.last_message_at, now),
            message_count=self.message_count + 1,
        )


@dataclass(frozen=True)
class BufferedMessage:
    """One inbound message as recorded in its buffer."""

    seq: int
    message_id: str
    content: str
    kind: str
    attachments: tuple[dict[str, Any], ...]
    arrived_at: datetime


@dataclass(frozen=True)
class AppendResult:
    buffer: BufferSnapshot
    appended: bool
    opened: bool
    forced: FlushReason | None


def flush_reason(buf: BufferSnapshot, policy: BufferPolicy, now: datetime) -> FlushReason | None:
    """Why the buffer should flush at `now`, or None if it should keep waiting.

    Ceilings win over the quiet period so a forced flush reports its cause.
    """
    if buf.status != "active":
        return None
    if buf.message_count >= policy.max_messages:
        return "size"
    if now - buf.window_start_at >= policy.max_age:
        return "age"
    if now - buf.last_message_at >= policy.quiet_window:
        return "quiet"
    return None


def next_check_at(buf: BufferSnapshot, policy: BufferPolicy) -> datetime:
    """Earliest time the buffer can become due without further messages."""
    return min(buf.last_message_at + policy.quiet_window, buf.window_start_at + policy.max_age)


_BUFFER_COLUMNS = "id, conversation_id, status, window_start_at, last_message_at, message_count"


def _snapshot(row: tuple[Any, ...]) -> BufferSnapshot:
    return BufferSnapshot(
        buffer_id=str(row[0]),
        conversation_id=str(row[1]),
        status=row[2],
        window_start_at=row[3],
        last_message_at=row[4],
        message_count=row[5],
    )


def _message(row: tuple[Any, ...]) -> BufferedMessage:
    return BufferedMessage(
        seq=row[0],
        message_id=row[1],
        content=row[2] or "",
        kind=row[3],
        attachments=tuple(row[4] or ()),
        arrived_at=row[5],
    )


_SELECT_ACTIVE_SQL = f"""
SELECT {_BUFFER_COLUMNS}
FROM message_buffers
WHERE conversation_id = %s AND status = 'active'
FOR UPDATE
"""

_OPEN_BUFFER_SQL = f"""
INSERT INTO message_buffers (conversation_id, status, window_start_at, last_message_at, message_count)
VALUES (%s, 'active', %s, %s, 0)
ON CONFLICT (conversation_id) WHERE status = 'active' DO NOTHING
RETURNING {_BUFFER_COLUMNS}
"""

_INSERT_MESSAGE_SQL = """
INSERT INTO inbound_messages
    (chatwoot_message_id, conversation_id, buffer_id, content, kind, attachments, arrived_at)
VALUES (%s, %s, %s, %s, %s, %s::jsonb, %s)
ON CONFLICT (chatwoot_message_id) DO NOTHING
"""

_TOUCH_BUFFER_SQL = f"""
UPDATE message_buffers
SET last_message_at = GREATEST(last_message_at, %s),
    message_count = message_count + 1
WHERE id = %s
RETURNING {_BUFFER_COLUMNS}
"""

# The due condition is re-evaluated under the row lock taken by UPDATE, so an
# append that committed first makes this match zero rows.
_BEGIN_FLUSH_SQL = f"""
UPDATE message_buffers
SET status = 'flushing',
    flush_started_at = %(now)s,
    flush_reason = CASE
        WHEN message_count >= %(max_messages)s THEN 'size'
        WHEN window_start_at <= %(age_cutoff)s THEN 'age'
        ELSE 'quiet'
    END
WHERE id = %(buffer_id)s
  AND status = 'active'
  AND (
        last_message_at <= %(quiet_cutoff)s
     OR message_count >= %(max_messages)s
     OR window_start_at <= %(age_cutoff)s
  )
RETURNING {_BUFFER_COLUMNS}
"""

_MARK_DONE_SQL = """
UPDATE message_buffers
SET status = 'done', done_at = %s, last_error = %s
WHERE id = %s AND status = 'flushing'
"""

_LOAD_MESSAGES_SQL = """
SELECT id, chatwoot_message_id, content, kind, attachments, arrived_at
FROM inbound_messages
WHERE buffer_id = %s
ORDER BY arrived_at, id
"""

_DUE_BUFFERS_SQL = """
SELECT id
FROM message_buffers
WHERE status = 'active'
  AND (
        last_message_at <= %s
     OR message_count >= %s
     OR window_start_at <= %s
  )
ORDER BY last_message_at
LIMIT %s
"""

_PURGE_DONE_SQL = """
DELETE FROM message_buffers
WHERE status = 'done' AND done_at < %s
"""

_ADOPT_REPLY_SQL = """
UPDATE inbound_messages
SET buffer_id = %s, consumed_at = %s
WHERE chatwoot_message_id = %s AND buffer_id IS NULL AND consumed_at IS NULL
"""

_LOAD_REPLY_SQL = """
SELECT id, chatwoot_message_id, content, kind, attachments, arrived_at, consumed_at
FROM inbound_messages
WHERE chatwoot_message_id = %s AND buffer_id IS NULL
"""

_CONSUME_REPLY_SQL = """
UPDATE inbound_messages
SET consumed_at = %s
WHERE chatwoot_message_id = %s AND buffer_id IS NULL AND consumed_at IS NULL
"""

_PENDING_REPLIES_SQL = """
SELECT conversation_id, chatwoot_message_id
FROM inbound_messages
WHERE buffer_id IS NULL AND consumed_at IS NULL AND received_at <= %s
ORDER BY received_at
LIMIT %s
"""

_PURGE_REPLIES_SQL = """
DELETE FROM inbound_messages
WHERE buffer_id IS NULL AND consumed_at IS NOT NULL AND consumed_at < %s
"""


def attachments_json(message: MessageCreated) -> str:
    return json.dumps(
        [
            {
                "id": a.attachment_id,
                "kind": a.kind,
                "file_type": a.file_type,
                "data_url": a.data_url,
                "file_size": a.file_size,
                "content_type": a.content_type,
            }
            for a in message.attachments
        ]
    )


def _active_buffer(cur: PgCursor, conversation_id: str, now: datetime) -> tuple[BufferSnapshot, bool]:
    """The conversation's active buffer, opened at `now` when there is none."""
    cur.execute(_SELECT_ACTIVE_SQL, (conversation_id,))
    row = cur.fetchone()
    if row is not None:
        return _snapshot(row), False

    cur.execute(_OPEN_BUFFER_SQL, (conversation_id, now, now))
    row = cur.fetchone()
    if row is not None:
        return _snapshot(row), True

    # Lost an open race despite the lock; take the winner's buffer
    cur.execute(_SELECT_ACTIVE_SQL, (conversation_id,))
    return _snapshot(cur.fetchone()), False


def _touch(cur: PgCursor, buffer_id: str, policy: BufferPolicy, now: datetime) -> tuple[BufferSnapshot, FlushReason | None]:
    cur.execute(_TOUCH_BUFFER_SQL, (now, buffer_id))
    buf = _snapshot(cur.fetchone())
    reason = flush_reason(buf, policy, now)
    return buf, reason if reason in ("size", "age") else None


def append_message(
    cur: PgCursor,
    *,
    conversation_id: str,
    message: MessageCreated,
    policy: BufferPolicy,
    now: datetime,
) -> AppendResult:
    """Append a message to the conversation's active buffer, opening one if needed.

    Caller holds the conversation row lock, which serializes appends for the
    same conversation. Message ordering uses the sender-side timestamp; the
    quiet window runs on receipt time.
    """
    buf, opened = _active_buffer(cur, conversation_id, now)

    cur.execute(
        _INSERT_MESSAGE_SQL,
        (
            message.message_id,
            conversation_id,
            buf.buffer_id,
            message.content,
            message.kind,
            attachments_json(message),
            message.created_at,
        ),
    )
    if cur.rowcount == 0:
        return AppendResult(buffer=buf, appended=False, opened=opened, forced=None)

    buf, forced = _touch(cur, buf.buffer_id, policy, now)
    return AppendResult(buffer=buf, appended=True, opened=opened, forced=forced)


def adopt_reply(
    cur: PgCursor,
    *,
    conversation_id: str,
    message_id: str,
    policy: BufferPolicy,
    now: datetime,
) -> AppendResult:
    """Move a recorded reply into the active buffer.

    Used when a reply arrives but the conversation no longer awaits one.
    """
    buf, opened = _active_buffer(cur, conversation_id, now)
    cur.execute(_ADOPT_REPLY_SQL, (buf.buffer_id, now, message_id))
    if cur.rowcount == 0:
        return AppendResult(buffer=buf, appended=False, opened=opened, forced=None)
    buf, forced = _touch(cur, buf.buffer_id, policy, now)
    return AppendResult(buffer=buf, appended=True, opened=opened, forced=forced)


def record_reply(cur: PgCursor, *, conversation_id: str, message: MessageCreated) -> bool:
    """Store a clarification reply outside any buffer. False if already recorded."""
    cur.execute(
        _INSERT_MESSAGE_SQL,
        (
            message.message_id,
            conversation_id,
            None,
            message.content,
            message.kind,
            attachments_json(message),
            message.created_at,
        ),
    )
    return cur.rowcount == 1


def load_reply(cur: PgCursor, message_id: str) -> tuple[BufferedMessage, bool] | None:
    """A recorded reply and whether it was already consumed."""
    cur.execute(_LOAD_REPLY_SQL, (message_id,))
    row = cur.fetchone()
    if row is None:
        return None
    return _message(row), row[6] is not None


def consume_reply(cur: PgCursor, message_id: str, now: datetime) -> bool:
    """Mark a reply consumed. Only the first caller gets True."""
    cur.execute(_CONSUME_REPLY_SQL, (now, message_id))
    return cur.rowcount == 1


def find_pending_replies(cur: PgCursor, older_than: datetime, limit: int = 100) -> list[tuple[str, str]]:
    """(conversation_id, message_id) of replies no handler has consumed yet."""
    cur.execute(_PENDING_REPLIES_SQL, (older_than, limit))
    return [(str(row[0]), row[1]) for row in cur.fetchall()]


def try_begin_flush(
    cur: PgCursor, buffer_id: str, policy: BufferPolicy, now: datetime
) -> BufferSnapshot | None:
    """Atomically move a due buffer from active to flushing.

    Returns the flushing snapshot for the single winner; None when the buffer
    is not due, already flushing/done, or unknown.
    """
    cur.execute(
        _BEGIN_FLUSH_SQL,
        {
            "buffer_id": buffer_id,
            "now": now,
            "quiet_cutoff": now - policy.quiet_window,
            "age_cutoff": now - policy.max_age,
            "max_messages": policy.max_messages,
        },
    )
    if cur.rowcount != 1:
        return None
    return _snapshot(cur.fetchone())


def mark_done(cur: PgCursor, buffer_id: str, now: datetime, error: str | None = None) -> None:
    cur.execute(_MARK_DONE_SQL, (now, error, buffer_id))


def load_messages(cur: PgCursor, buffer_id: str) -> list[BufferedMessage]:
    """Buffered messages in arrival order."""
    cur.execute(_LOAD_MESSAGES_SQL, (buffer_id,))
    return [_message(row) for row in cur.fetchall()]


def find_due_buffers(
    cur: PgCursor, policy: BufferPolicy, now: datetime, limit: int = 100
) -> list[str]:
    cur.execute(
        _DUE_BUFFERS_SQL,
        (now - policy.quiet_window, policy.max_messages, now - policy.max_age, limit),
    )
    return [str(row[0]) for row in cur.fetchall()]


def purge_done_buffers(cur: PgCursor, older_than: datetime) -> int:
    """Delete finished buffers (with their messages) and consumed replies older than the cutoff.

    Returns the number of buffers deleted.
    """
    cur.execute(_PURGE_DONE_SQL, (older_than,))
    purged = cur.rowcount
    cur.execute(_PURGE_REPLIES_SQL, (older_than,))
    return purged
