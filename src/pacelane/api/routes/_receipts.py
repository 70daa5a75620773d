"""processed_events receipts for task endpoints.

Cloud Tasks delivers at least once. Handlers are idempotent on their own;
the receipt short-circuits a redelivery of a task that already completed.
"""

from pacelane.infra.db import txn
from pacelane.infra.repositories.processed_events import receipt_exists, record_receipt


def already_done(source: str, task_id: str | None) -> bool:
    if not task_id:
        return False
    with txn() as cur:
        return receipt_exists(cur, source, task_id)


def mark_task_done(source: str, task_id: str | None) -> None:
    if not task_id:
        return
    with txn() as cur:
        record_receipt(cur, source, task_id)
