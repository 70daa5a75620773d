"""Authentication for worker task endpoints.

Tasks arrive from Cloud Tasks with an OIDC token minted for
TASKS_OIDC_AUDIENCE. When that audience is the local-dev marker, the
X-Internal-Task-Secret header is accepted instead so the HTTP tasks
backend works without GCP credentials.
"""

from __future__ import annotations

import os

from fastapi import HTTPException, Request
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

from pacelane.observability.correlation import get_correlation_id
from pacelane.observability.logging import get_logger
from pacelane.observability.redaction import safe_log_context

logger = get_logger(__name__)

LOCAL_DEV_AUDIENCE = "pacelane-tasks-local"
INTERNAL_SECRET_HEADER = "X-Internal-Task-Secret"


def extract_bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    return auth_header[len("Bearer "):] or None


def verify_task_oidc(token: str) -> bool:
    """Check a Cloud Tasks OIDC token against the configured audience.

    Fails closed when TASKS_OIDC_AUDIENCE is unset. When
    TASKS_OIDC_SERVICE_ACCOUNT is set, the token's email must match it.
    """
    audience = os.environ.get("TASKS_OIDC_AUDIENCE")
    if not token or not audience:
        if not audience:
            logger.error(
                "task audience not configured",
                extra={"extra_fields": safe_log_context(reason="missing_audience_env")},
            )
        return False

    try:
        claims = id_token.verify_oauth2_token(token, google_requests.Request(), audience=audience)
    except ValueError as e:
        logger.warning(
            "task token rejected",
            extra={"extra_fields": safe_log_context(error=str(e), expected_audience=audience)},
        )
        return False

    expected_email = os.environ.get("TASKS_OIDC_SERVICE_ACCOUNT")
    if expected_email and claims.get("email", "") != expected_email:
        logger.warning(
            "task token from unexpected service account",
            extra={"extra_fields": safe_log_context(expected_email=expected_email)},
        )
        return False
    return True


def _internal_secret_ok(request: Request) -> bool:
    if os.environ.get("TASKS_OIDC_AUDIENCE", "") != LOCAL_DEV_AUDIENCE:
        return False
    secret = os.environ.get("INTERNAL_TASK_SECRET", "")
    return bool(secret) and request.headers.get(INTERNAL_SECRET_HEADER, "") == secret


def verify_task_auth(request: Request) -> bool:
    if _internal_secret_ok(request):
        return True
    token = extract_bearer_token(request)
    if token is None:
        logger.warning(
            "task request without bearer token",
            extra={"extra_fields": safe_log_context(reason="missing_bearer_token")},
        )
        return False
    return verify_task_oidc(token)


def require_task_auth(request: Request) -> None:
    """Route dependency: 401 unless the caller is an authenticated task runner."""
    if not verify_task_auth(request):
        logger.warning(
            "task auth failed",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=get_correlation_id(), path=request.url.path
                )
            },
        )
        raise HTTPException(status_code=401, detail="Unauthorized")
