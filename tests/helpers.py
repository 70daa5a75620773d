"""Shared test helpers for Pacelane tests.

In-memory fakes for the object store, the language model and the speech
transcriber, plus small factories for pipeline values. These are NOT
fixtures - they are regular functions and classes.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any
from unittest.mock import MagicMock

from pacelane.chatwoot.models import Attachment, MessageCreated, Sender
from pacelane.domain.buffers import BufferedMessage, BufferSnapshot
from pacelane.domain.conversations import Conversation
from pacelane.infra.object_store import BucketAlreadyExistsError, LifecyclePolicy
from pacelane.llm.openai_client import Transcription

T0 = datetime(2025, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


class FakeObjectStore:
    """Thread-safe in-memory ObjectStore. Creating an existing bucket conflicts."""

    def __init__(self, fail_put: bool = False, fail_exists: bool = False) -> None:
        self._lock = threading.Lock()
        self.buckets: dict[str, LifecyclePolicy] = {}
        self.objects: dict[tuple[str, str], tuple[bytes, str]] = {}
        self.create_calls = 0
        self.fail_put = fail_put
        self.fail_exists = fail_exists

    def exists(self, bucket_name: str) -> bool:
        if self.fail_exists:
            raise RuntimeError("storage unavailable")
        with self._lock:
            return bucket_name in self.buckets

    def create(self, bucket_name: str, lifecycle: LifecyclePolicy) -> None:
        with self._lock:
            self.create_calls += 1
            if bucket_name in self.buckets:
                raise BucketAlreadyExistsError(bucket_name)
            self.buckets[bucket_name] = lifecycle

    def put(self, bucket_name: str, path: str, data: bytes, content_type: str) -> None:
        if self.fail_put:
            raise RuntimeError("upload failed")
        with self._lock:
            self.objects[(bucket_name, path)] = (data, content_type)


class FakeLLM:
    """LanguageClassifier + Transcriber double.

    `answer` is returned by complete(); an Exception instance is raised instead.
    """

    def __init__(self, answer: Any = None, transcript: str = "", transcript_error: str | None = None) -> None:
        self.answer = answer
        self.transcript = transcript
        self.transcript_error = transcript_error
        self.prompts: list[str] = []
        self.transcribed: list[str] = []

    def complete(self, prompt: str) -> dict[str, Any]:
        self.prompts.append(prompt)
        if isinstance(self.answer, Exception):
            raise self.answer
        return self.answer

    def transcribe(self, audio: bytes, filename: str) -> Transcription:
        self.transcribed.append(filename)
        if self.transcript_error:
            return Transcription(text="", error=self.transcript_error)
        return Transcription(text=self.transcript)


@contextmanager
def fake_txn_for(cur):
    yield cur


def mock_txn(cur: MagicMock | None = None):
    """A txn() replacement that always yields the same mock cursor."""
    cur = cur if cur is not None else MagicMock()

    def _txn():
        return fake_txn_for(cur)

    return _txn


def make_event(
    *,
    message_id: str = "101",
    conversation_id: str = "7",
    account_id: str = "1",
    sender_id: str = "42",
    content: str = "hello",
    kind: str = "text",
    created_at: datetime = T0,
    attachments: tuple[Attachment, ...] = (),
    phone_number: str | None = "+5511999998888",
) -> MessageCreated:
    return MessageCreated(
        message_id=message_id,
        account_id=account_id,
        conversation_id=conversation_id,
        sender=Sender(sender_id=sender_id, name="Ana", phone_number=phone_number),
        content=content,
        kind=kind,  # type: ignore[arg-type]
        created_at=created_at,
        attachments=attachments,
    )


def make_buffered(
    seq: int,
    content: str = "",
    *,
    arrived_at: datetime = T0,
    kind: str = "text",
    attachments: tuple[dict[str, Any], ...] = (),
    message_id: str | None = None,
) -> BufferedMessage:
    return BufferedMessage(
        seq=seq,
        message_id=message_id or f"m{seq}",
        content=content,
        kind=kind,
        attachments=attachments,
        arrived_at=arrived_at,
    )


def make_snapshot(
    *,
    buffer_id: str = "buf-1",
    conversation_id: str = "conv-1",
    status: str = "active",
    window_start_at: datetime = T0,
    last_message_at: datetime = T0,
    message_count: int = 1,
) -> BufferSnapshot:
    return BufferSnapshot(
        buffer_id=buffer_id,
        conversation_id=conversation_id,
        status=status,  # type: ignore[arg-type]
        window_start_at=window_start_at,
        last_message_at=last_message_at,
        message_count=message_count,
    )


def make_conversation(**overrides: Any) -> Conversation:
    values: dict[str, Any] = {
        "id": "conv-1",
        "chatwoot_conversation_id": "7",
        "account_id": "1",
        "contact_key": "42_account_1",
        "user_id": "user-1",
        "bucket_name": "pacelane-whatsapp-user-abc",
        "state": "idle",
        "pending_field": None,
        "partial_params": {},
    }
    values.update(overrides)
    return Conversation(**values)
