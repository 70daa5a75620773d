"""Worker route for the downstream "order ready" hook."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from pacelane.api.task_auth import require_task_auth
from pacelane.services.orders import notify_order_ready

from ._receipts import already_done, mark_task_done

router = APIRouter(
    prefix="/tasks/orders",
    tags=["tasks"],
    dependencies=[Depends(require_task_auth)],
)

READY_TASK_SOURCE = "tasks.orders.ready"


class OrderReadyRequest(BaseModel):
    order_id: str
    task_id: str | None = None


@router.post("/ready")
def order_ready(req: OrderReadyRequest) -> dict:
    """Send the ready notice when the order's owner opted in."""
    if already_done(READY_TASK_SOURCE, req.task_id):
        return {"ok": True, "status": "duplicate"}
    sent = notify_order_ready(req.order_id)
    mark_task_done(READY_TASK_SOURCE, req.task_id)
    return {"ok": True, "status": "sent" if sent else "suppressed"}
