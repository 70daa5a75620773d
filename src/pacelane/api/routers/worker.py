"""Worker/internal routes (APP_ROLE=worker)."""

from fastapi import APIRouter

from pacelane.tasks.client import get_tasks_client

router = APIRouter()


@router.get("/tasks/health")
def tasks_health() -> dict:
    """Tasks subsystem health check."""
    return {"status": "ok", "subsystem": "tasks", "backend": get_tasks_client().backend}
