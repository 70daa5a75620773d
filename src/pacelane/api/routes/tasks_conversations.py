"""Worker route for clarification replies."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from pacelane.api.task_auth import require_task_auth
from pacelane.infra.hashing import hash_for_log
from pacelane.observability.correlation import get_correlation_id
from pacelane.observability.logging import get_logger
from pacelane.observability.redaction import safe_log_context
from pacelane.services.replies import handle_reply

from ._receipts import already_done, mark_task_done

router = APIRouter(
    prefix="/tasks/conversations",
    tags=["tasks"],
    dependencies=[Depends(require_task_auth)],
)

logger = get_logger(__name__)

REPLY_TASK_SOURCE = "tasks.conversations.handle_reply"


class HandleReplyRequest(BaseModel):
    conversation_id: str
    message_id: str
    task_id: str | None = None


@router.post("/handle-reply")
def handle_reply_task(req: HandleReplyRequest):
    correlation_id = get_correlation_id()
    if already_done(REPLY_TASK_SOURCE, req.task_id):
        return {"ok": True, "status": "duplicate"}

    try:
        outcome = handle_reply(req.conversation_id, req.message_id, correlation_id=correlation_id)
    except Exception:
        logger.exception(
            "handle-reply task failed",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    conversation_hash=hash_for_log(req.conversation_id),
                )
            },
        )
        return Response(status_code=500, content="reply failed")

    mark_task_done(REPLY_TASK_SOURCE, req.task_id)
    return {"ok": True, "status": outcome.status}
