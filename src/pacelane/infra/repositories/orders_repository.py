"""Content orders. One row per buffer; rows are never updated."""

import json
from dataclasses import dataclass
from datetime import datetime

from psycopg2.extensions import cursor as PgCursor

from pacelane.domain.order_params import OrderParams


@dataclass(frozen=True)
class ContentOrder:
    id: str
    buffer_id: str
    conversation_id: str
    owner_id: str
    platform: str
    length: str
    tone: str
    angle: str
    topic: str
    refs: tuple[str, ...]
    original_content: str
    created_at: datetime


_COLUMNS = """
    id, buffer_id, conversation_id, owner_id, platform, length, tone, angle,
    topic, refs, original_content, created_at
"""


def insert_order(
    cur: PgCursor,
    *,
    buffer_id: str,
    conversation_id: str,
    owner_id: str,
    params: OrderParams,
    original_content: str,
) -> tuple[str, bool]:
    """Insert the order for a buffer.

    Returns:
        (order_id, created). created is False when the buffer already had an order.
    """
    cur.execute(
        """
        INSERT INTO content_orders
            (buffer_id, conversation_id, owner_id, platform, length, tone, angle,
             topic, refs, original_content)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s::jsonb, %s)
        ON CONFLICT (buffer_id) DO NOTHING
        RETURNING id
        """,
        (
            buffer_id,
            conversation_id,
            owner_id,
            params.platform,
            params.length,
            params.tone,
            params.angle,
            params.topic,
            json.dumps(list(params.refs)),
            original_content,
        ),
    )
    row = cur.fetchone()
    if row is not None:
        return str(row[0]), True

    cur.execute("SELECT id FROM content_orders WHERE buffer_id = %s", (buffer_id,))
    return str(cur.fetchone()[0]), False


def get_order(cur: PgCursor, order_id: str) -> ContentOrder | None:
    cur.execute(f"SELECT {_COLUMNS} FROM content_orders WHERE id = %s", (order_id,))
    row = cur.fetchone()
    if row is None:
        return None
    return ContentOrder(
        id=str(row[0]),
        buffer_id=str(row[1]),
        conversation_id=str(row[2]),
        owner_id=row[3],
        platform=row[4],
        length=row[5],
        tone=row[6],
        angle=row[7],
        topic=row[8],
        refs=tuple(row[9] or ()),
        original_content=row[10],
        created_at=row[11],
    )
