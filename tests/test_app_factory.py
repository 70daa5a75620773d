"""Tests for app factory and role-based routing."""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from pacelane.api.factory import create_app


@pytest.fixture
def public_client():
    return TestClient(create_app(role="public"))


@pytest.fixture
def worker_client():
    return TestClient(create_app(role="worker"))


class TestPublicRole:
    def test_health_available(self, public_client):
        response = public_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_worker_health_not_mounted(self, public_client):
        assert public_client.get("/tasks/health").status_code == 404

    def test_task_routes_not_mounted(self, public_client):
        response = public_client.post("/tasks/buffers/flush", json={"buffer_id": "b1"})
        assert response.status_code == 404

    def test_webhook_mounted(self, public_client):
        response = public_client.post("/webhooks/chatwoot", json={"event": "conversation_created"})
        assert response.status_code == 200
        assert response.text == "ignored"


class TestWorkerRole:
    def test_health_available(self, worker_client):
        assert worker_client.get("/health").status_code == 200

    def test_tasks_health_reports_backend(self, worker_client):
        response = worker_client.get("/tasks/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "subsystem": "tasks", "backend": "inline"}

    def test_only_listed_health_routes(self, worker_client):
        assert worker_client.get("/internal/health").status_code == 404

    def test_task_routes_mounted(self, worker_client):
        with patch("pacelane.api.task_auth.verify_task_auth", return_value=True):
            response = worker_client.post("/tasks/buffers/flush", json={})
        # Body validation, not routing
        assert response.status_code == 422


def test_role_from_env(monkeypatch):
    monkeypatch.setenv("APP_ROLE", "worker")
    client = TestClient(create_app())
    assert client.get("/tasks/health").status_code == 200


class TestCorrelationId:
    def test_generates_correlation_id(self, public_client):
        response = public_client.get("/health")
        assert response.headers.get("X-Correlation-ID")

    def test_echoes_incoming_correlation_id(self, public_client):
        response = public_client.get("/health", headers={"X-Correlation-ID": "cid-from-chatwoot"})
        assert response.headers["X-Correlation-ID"] == "cid-from-chatwoot"
