"""Tasks client with idempotent enqueue.

Backends selectable via TASKS_BACKEND env var:
- inline (default): registers tasks without executing them (dev/tests)
- http: sends tasks to the worker via HTTP POST
- cloud_tasks: sends tasks to Google Cloud Tasks
"""

import os
from collections import OrderedDict, deque
from datetime import datetime

# Ids are per message, so a long-lived worker keeps only the most recent ones
MAX_SEEN_TASK_IDS = 10_000


class TasksClient:
    """Tasks client with idempotent enqueue by task_id.

    Tracks the most recent task_ids seen by this process so a repeated
    task_id is a no-op. Older ids are forgotten.
    Cross-process dedupe is the backend's job (Cloud Tasks task names) and
    the worker's (processed_events receipts).
    """

    def __init__(self, backend: str | None = None, max_seen: int = MAX_SEEN_TASK_IDS) -> None:
        self._max_seen = max_seen
        self._executed_ids: OrderedDict[str, None] = OrderedDict()
        self._scheduled_tasks: deque[dict] = deque(maxlen=max_seen)
        self._backend = backend or os.environ.get("TASKS_BACKEND", "inline")

    @property
    def backend(self) -> str:
        return self._backend

    def enqueue_http(
        self,
        task_id: str,
        url_path: str,
        payload: dict,
        correlation_id: str | None = None,
        schedule_time: datetime | None = None,
    ) -> bool:
        """Enqueue task for HTTP-based execution on the worker.

        Args:
            task_id: Unique identifier for idempotency.
            url_path: Worker endpoint path (e.g., "/tasks/buffers/flush").
            payload: Task data (ids only, never message text or phones).
            correlation_id: Optional correlation ID for tracing.
            schedule_time: Optional future execution time.

        Returns:
            True if task was enqueued (new task_id).
            False if no-op (task_id already seen) or backend refused.

        Raises:
            ValueError: If TASKS_BACKEND is unknown.
        """
        if task_id in self._executed_ids:
            return False

        self._executed_ids[task_id] = None
        if len(self._executed_ids) > self._max_seen:
            self._executed_ids.popitem(last=False)

        if self._backend == "inline":
            self._scheduled_tasks.append({
                "task_id": task_id,
                "url_path": url_path,
                "payload": payload,
                "correlation_id": correlation_id,
                "schedule_time": schedule_time,
            })
            return True

        elif self._backend == "http":
            from pacelane.tasks.http_backend import enqueue_http
            return enqueue_http(
                task_id, url_path, payload, correlation_id, schedule_time
            )

        elif self._backend == "cloud_tasks":
            from pacelane.tasks.cloud_tasks_backend import enqueue_cloud_task
            return enqueue_cloud_task(
                task_id, url_path, payload, correlation_id, schedule_time
            )

        else:
            raise ValueError(f"Unknown TASKS_BACKEND: {self._backend}")

    def was_executed(self, task_id: str) -> bool:
        """Check if task_id was already enqueued by this client."""
        return task_id in self._executed_ids

    def get_scheduled_tasks(self) -> list[dict]:
        """Get list of registered tasks (inline backend, useful for testing)."""
        return list(self._scheduled_tasks)

    def clear(self) -> None:
        """Clear seen task_ids and registered tasks (useful for testing)."""
        self._executed_ids.clear()
        self._scheduled_tasks.clear()


_tasks_client: TasksClient | None = None


def get_tasks_client() -> TasksClient:
    """Process-wide TasksClient, created on first use."""
    global _tasks_client
    if _tasks_client is None:
        _tasks_client = TasksClient()
    return _tasks_client
