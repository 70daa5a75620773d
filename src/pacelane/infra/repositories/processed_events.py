"""Receipts for webhook deliveries and task executions.

A (source, external_id) pair is recorded once; re-delivery of the same
event finds the receipt and becomes a no-op.
"""

from psycopg2.extensions import cursor as PgCursor

WEBHOOK_SOURCE = "chatwoot"


def record_receipt(cur: PgCursor, source: str, external_id: str) -> bool:
    """Insert the receipt. Returns False when it was already recorded."""
    cur.execute(
        """
        INSERT INTO processed_events (source, external_id)
        VALUES (%s, %s)
        ON CONFLICT (source, external_id) DO NOTHING
        """,
        (source, external_id),
    )
    return cur.rowcount == 1


def receipt_exists(cur: PgCursor, source: str, external_id: str) -> bool:
    cur.execute(
        "SELECT 1 FROM processed_events WHERE source = %s AND external_id = %s",
        (source, external_id),
    )
    return cur.fetchone() is not None
