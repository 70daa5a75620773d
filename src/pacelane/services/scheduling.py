"""Deferred flush checks for buffers that just received a message."""

from __future__ import annotations

from datetime import timedelta

from pacelane.domain.buffers import AppendResult, BufferPolicy, next_check_at
from pacelane.tasks.client import TasksClient

FLUSH_TASK_PATH = "/tasks/buffers/flush"
REPLY_TASK_PATH = "/tasks/conversations/handle-reply"

# Lands the deferred check just after the quiet window closes
CHECK_SLACK_SECONDS = 1


def schedule_flush(
    tasks_client: TasksClient,
    appended: AppendResult,
    policy: BufferPolicy,
    correlation_id: str | None = None,
) -> bool:
    """Enqueue the flush check for a buffer after an append.

    A forced flush (size or age ceiling hit) runs immediately; otherwise the
    check fires when the buffer can next become due. The task id carries the
    message count so every append gets its own check.
    """
    buf = appended.buffer
    task_id = f"buffer-flush:{buf.buffer_id}:{buf.message_count}"
    payload = {"task_id": task_id, "buffer_id": buf.buffer_id}
    schedule_time = None
    if not appended.forced:
        schedule_time = next_check_at(buf, policy) + timedelta(seconds=CHECK_SLACK_SECONDS)
    return tasks_client.enqueue_http(
        task_id=task_id,
        url_path=FLUSH_TASK_PATH,
        payload=payload,
        correlation_id=correlation_id,
        schedule_time=schedule_time,
    )
