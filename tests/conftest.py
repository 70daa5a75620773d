"""Shared pytest fixtures for Pacelane tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_singletons(monkeypatch):
    """Drop process-wide clients so no test sees another test's fakes."""
    import pacelane.domain.notifications as notifications_module
    import pacelane.infra.object_store as object_store_module
    import pacelane.llm.openai_client as llm_module
    import pacelane.tasks.client as tasks_client_module

    for module, name in (
        (notifications_module, "_gate"),
        (object_store_module, "_object_store"),
        (llm_module, "_llm_client"),
        (tasks_client_module, "_tasks_client"),
    ):
        monkeypatch.setattr(module, name, None)

    # Pipeline env knobs must come from the test, not the shell
    for var in (
        "BUFFERING_ENABLED",
        "BUFFER_QUIET_WINDOW_SECONDS",
        "BUFFER_MAX_MESSAGES",
        "BUFFER_MAX_AGE_SECONDS",
        "ORDER_REQUIRED_FIELDS",
        "OPENAI_API_KEY",
        "TASKS_BACKEND",
        "CHATWOOT_WEBHOOK_SECRET",
        "BUCKET_PREFIX",
        "DEFAULT_COUNTRY_CODE",
    ):
        monkeypatch.delenv(var, raising=False)
    yield
