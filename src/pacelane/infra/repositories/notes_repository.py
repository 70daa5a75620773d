"""Knowledge notes: NOTE-intent units stored without any reply."""

import json
from typing import Any

from psycopg2.extensions import cursor as PgCursor


def insert_note(
    cur: PgCursor,
    *,
    buffer_id: str,
    conversation_id: str,
    owner_id: str,
    content: str,
    attachments: list[dict[str, Any]],
    message_count: int,
) -> int | None:
    """Store a note. Returns its id, or None if the buffer already has one."""
    cur.execute(
        """
        INSERT INTO knowledge_notes
            (buffer_id, conversation_id, owner_id, content, attachments, message_count)
        VALUES (%s, %s, %s, %s, %s::jsonb, %s)
        ON CONFLICT (buffer_id) DO NOTHING
        RETURNING id
        """,
        (buffer_id, conversation_id, owner_id, content, json.dumps(attachments), message_count),
    )
    row = cur.fetchone()
    return row[0] if row else None
