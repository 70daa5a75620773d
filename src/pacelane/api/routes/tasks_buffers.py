"""Worker routes for buffer flushes and the periodic sweep."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from pacelane.api.task_auth import require_task_auth
from pacelane.observability.correlation import get_correlation_id
from pacelane.observability.logging import get_logger
from pacelane.observability.redaction import safe_log_context
from pacelane.services.processing import flush_buffer, sweep

from ._receipts import already_done, mark_task_done

router = APIRouter(
    prefix="/tasks/buffers",
    tags=["tasks"],
    dependencies=[Depends(require_task_auth)],
)

logger = get_logger(__name__)

FLUSH_TASK_SOURCE = "tasks.buffers.flush"


class FlushRequest(BaseModel):
    buffer_id: str
    task_id: str | None = None


@router.post("/flush")
def flush(req: FlushRequest):
    """Deferred flush check for one buffer.

    A buffer that is not yet due, or that another caller already flushed,
    answers "skipped". Failures are reported to the user by the pipeline
    and still answer 200; retrying a failed flush would not reopen it.
    """
    correlation_id = get_correlation_id()
    if already_done(FLUSH_TASK_SOURCE, req.task_id):
        return {"ok": True, "status": "duplicate"}

    try:
        outcome = flush_buffer(req.buffer_id)
    except Exception:
        logger.exception(
            "flush task failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, buffer_id=req.buffer_id)},
        )
        return Response(status_code=500, content="flush failed")

    if outcome.status != "skipped":
        mark_task_done(FLUSH_TASK_SOURCE, req.task_id)
    return {"ok": True, "status": outcome.status}


@router.post("/sweep")
def run_sweep():
    """Periodic durable timer (Cloud Scheduler)."""
    try:
        report = sweep()
    except Exception:
        logger.exception(
            "sweep failed",
            extra={"extra_fields": safe_log_context(correlationId=get_correlation_id())},
        )
        return Response(status_code=500, content="sweep failed")
    return {"ok": True, **asdict(report)}
