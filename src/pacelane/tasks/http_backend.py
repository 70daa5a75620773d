"""HTTP backend for tasks - sends tasks to the worker via HTTP POST.

Used in local/staging environments where api and worker run as separate
containers on the same network. Scheduled tasks are not delayed here; the
periodic buffer sweep picks up anything that becomes due later.
"""

import os
from datetime import datetime

import requests
from google.auth.transport.requests import Request as GoogleRequest
from google.oauth2.id_token import fetch_id_token

from pacelane.observability.logging import get_logger
from pacelane.observability.redaction import safe_log_context

logger = get_logger(__name__)

# Same marker the worker checks before accepting the internal secret
_LOCAL_DEV_AUDIENCE = "pacelane-tasks-local"


def _worker_base_url() -> str:
    return os.environ.get("WORKER_BASE_URL", "http://worker:8000")


def _fetch_oidc_token(audience: str) -> str | None:
    """Fetch a GCP ID token for the given audience, None if unavailable."""
    try:
        return fetch_id_token(GoogleRequest(), audience)
    except Exception as e:
        logger.error(
            "failed to fetch OIDC ID token",
            extra={"extra_fields": safe_log_context(audience=audience, error_type=type(e).__name__)},
        )
        return None


def enqueue_http(
    task_id: str,
    url_path: str,
    payload: dict,
    correlation_id: str | None = None,
    schedule_time: datetime | None = None,
) -> bool:
    """Enqueue task via HTTP POST to worker.

    Returns:
        True if request succeeded (2xx) or the task was scheduled, False otherwise.
    """
    if schedule_time is not None:
        logger.info(
            "HTTP backend skips scheduled task, sweep will cover it",
            extra={"extra_fields": safe_log_context(task_id=task_id, url_path=url_path)},
        )
        return True

    base_url = _worker_base_url()
    url = f"{base_url}{url_path}"
    headers = {
        "Content-Type": "application/json",
        "X-Correlation-ID": correlation_id or "",
        "X-Task-Id": task_id,
    }

    # Shared secret for local dev, real OIDC token elsewhere
    if os.environ.get("TASKS_OIDC_AUDIENCE", "") == _LOCAL_DEV_AUDIENCE:
        secret = os.environ.get("INTERNAL_TASK_SECRET", "")
        if secret:
            headers["X-Internal-Task-Secret"] = secret
    else:
        token = _fetch_oidc_token(os.environ.get("TASKS_OIDC_AUDIENCE") or base_url)
        if not token:
            logger.error(
                "HTTP task enqueue aborted: OIDC token unavailable",
                extra={"extra_fields": safe_log_context(task_id=task_id, url_path=url_path)},
            )
            return False
        headers["Authorization"] = f"Bearer {token}"

    try:
        response = requests.post(
            url,
            json=payload,
            headers=headers,
            timeout=int(os.environ.get("TASKS_HTTP_TIMEOUT", "30")),
        )
        response.raise_for_status()
        logger.info(
            "HTTP task enqueued",
            extra={"extra_fields": safe_log_context(task_id=task_id, url_path=url_path)},
        )
        return True
    except requests.RequestException as e:
        logger.error(
            "HTTP task enqueue failed",
            extra={
                "extra_fields": safe_log_context(
                    task_id=task_id, url_path=url_path, error_type=type(e).__name__
                )
            },
        )
        return False
