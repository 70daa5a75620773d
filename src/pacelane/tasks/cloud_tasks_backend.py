"""Cloud Tasks backend for GCP deployment."""

import json
import os
from datetime import datetime

from google.api_core import exceptions as gcp_exceptions
from google.cloud import tasks_v2
from google.protobuf import timestamp_pb2

from pacelane.observability.logging import get_logger
from pacelane.observability.redaction import safe_log_context

logger = get_logger(__name__)


def _task_name_suffix(task_id: str) -> str:
    """Cloud Tasks names allow [A-Za-z0-9_-] only."""
    return "".join(c if c.isalnum() or c in "_-" else "-" for c in task_id)


def enqueue_cloud_task(
    task_id: str,
    url_path: str,
    payload: dict,
    correlation_id: str | None = None,
    schedule_time: datetime | None = None,
) -> bool:
    """Enqueue task via Google Cloud Tasks.

    The task name is derived from task_id so Cloud Tasks dedupes repeats;
    ALREADY_EXISTS is treated as success.

    Raises:
        RuntimeError: If required env vars not set.
    """
    project = os.environ.get("GOOGLE_CLOUD_PROJECT") or os.environ.get("GCP_PROJECT_ID")
    location = os.environ.get("GCP_LOCATION", "us-central1")
    queue = os.environ.get("GCP_TASKS_QUEUE", "pacelane-default")
    worker_url = os.environ.get("WORKER_BASE_URL")
    oidc_service_account = os.environ.get("TASKS_OIDC_SERVICE_ACCOUNT")
    audience = os.environ.get("TASKS_OIDC_AUDIENCE")

    if not project:
        raise RuntimeError("GOOGLE_CLOUD_PROJECT or GCP_PROJECT_ID required")
    if not worker_url:
        raise RuntimeError("WORKER_BASE_URL required for Cloud Tasks")
    if not oidc_service_account:
        raise RuntimeError("TASKS_OIDC_SERVICE_ACCOUNT required for Cloud Tasks")
    if not audience:
        raise RuntimeError("TASKS_OIDC_AUDIENCE required for Cloud Tasks")

    client = tasks_v2.CloudTasksClient()
    parent = client.queue_path(project, location, queue)

    headers = {"Content-Type": "application/json"}
    if correlation_id:
        headers["X-Correlation-ID"] = correlation_id

    task = {
        "name": f"{parent}/tasks/{_task_name_suffix(task_id)}",
        "http_request": {
            "http_method": tasks_v2.HttpMethod.POST,
            "url": f"{worker_url.rstrip('/')}{url_path}",
            "headers": headers,
            "body": json.dumps(payload).encode(),
            "oidc_token": {
                "service_account_email": oidc_service_account,
                "audience": audience,
            },
        },
    }

    if schedule_time:
        timestamp = timestamp_pb2.Timestamp()
        timestamp.FromDatetime(schedule_time)
        task["schedule_time"] = timestamp

    log_ctx = safe_log_context(task_id=task_id, url_path=url_path)
    try:
        response = client.create_task(parent=parent, task=task)
    except gcp_exceptions.AlreadyExists:
        logger.info("cloud task already exists (dedupe)", extra={"extra_fields": log_ctx})
        return True
    except Exception:
        logger.exception("failed to enqueue cloud task", extra={"extra_fields": log_ctx})
        raise

    logger.info(
        "cloud task enqueued",
        extra={"extra_fields": {**log_ctx, "task_name": response.name}},
    )
    return True
