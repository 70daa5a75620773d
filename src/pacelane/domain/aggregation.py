"""Merge a flushed buffer into one classification input.

Text is concatenated in arrival order. Audio is downloaded, archived in the
identity's bucket and transcribed; the transcript takes the audio's place in
the text. Images and other files are archived and passed on as references.
A failing attachment is logged and skipped, never fatal for the unit.
"""

import mimetypes
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Protocol, Sequence

from pacelane.chatwoot.media import download_attachment
from pacelane.infra.hashing import hash_for_log
from pacelane.infra.object_store import ObjectStore
from pacelane.infra.time import date_path
from pacelane.llm.openai_client import Transcription
from pacelane.observability.logging import get_logger
from pacelane.observability.redaction import safe_log_context

from .buffers import BufferedMessage

logger = get_logger(__name__)

_PATH_PREFIX = {
    "audio": "whatsapp-audio",
    "image": "whatsapp-images",
    "file": "whatsapp-files",
}

_DEFAULT_EXT = {"audio": "mp3", "image": "jpg", "file": "bin"}


class Transcriber(Protocol):
    def transcribe(self, audio: bytes, filename: str) -> Transcription: ...


@dataclass(frozen=True)
class StoredAttachment:
    message_id: str
    kind: str
    bucket_name: str
    path: str
    content_type: str


@dataclass(frozen=True)
class AggregatedUnit:
    buffer_id: str | None
    conversation_id: str
    text: str
    attachments: tuple[StoredAttachment, ...]
    message_count: int
    message_ids: tuple[str, ...]


def _extension(kind: str, content_type: str | None) -> str:
    if content_type:
        guessed = mimetypes.guess_extension(content_type.split(";")[0].strip())
        if guessed:
            return guessed.lstrip(".")
    return _DEFAULT_EXT.get(kind, "bin")


def object_path(kind: str, arrived_at: datetime, conversation_id: str, message_id: str,
                attachment_id: str, content_type: str | None) -> str:
    prefix = _PATH_PREFIX.get(kind, "whatsapp-files")
    ext = _extension(kind, content_type)
    return f"{prefix}/{date_path(arrived_at)}/{conversation_id}/{message_id}_{attachment_id}.{ext}"


def _process_attachment(
    message: BufferedMessage,
    attachment: dict[str, Any],
    *,
    bucket_name: str,
    conversation_id: str,
    store: ObjectStore,
    transcriber: Transcriber | None,
    download: Callable[[str], tuple[bytes, str | None]],
) -> tuple[StoredAttachment | None, str | None]:
    kind = attachment.get("kind") or "file"
    data, header_type = download(attachment["data_url"])
    content_type = attachment.get("content_type") or header_type or "application/octet-stream"
    path = object_path(
        kind, message.arrived_at, conversation_id, message.message_id,
        str(attachment.get("id")), content_type,
    )
    store.put(bucket_name, path, data, content_type)
    stored = StoredAttachment(
        message_id=message.message_id,
        kind=kind,
        bucket_name=bucket_name,
        path=path,
        content_type=content_type,
    )

    transcript = None
    if kind == "audio" and transcriber is not None:
        result = transcriber.transcribe(data, path.rsplit("/", 1)[-1])
        if result.error:
            logger.warning(
                "audio transcription failed",
                extra={"extra_fields": safe_log_context(message_hash=hash_for_log(message.message_id), error=result.error)},
            )
        else:
            transcript = result.text.strip() or None
    return stored, transcript


def aggregate(
    buffer_id: str | None,
    conversation_id: str,
    messages: Sequence[BufferedMessage],
    *,
    bucket_name: str,
    store: ObjectStore,
    transcriber: Transcriber | None,
    download: Callable[[str], tuple[bytes, str | None]] = download_attachment,
) -> AggregatedUnit:
    """Build the single processing unit for a flushed buffer."""
    ordered = sorted(messages, key=lambda m: (m.arrived_at, m.seq))
    parts: list[str] = []
    stored: list[StoredAttachment] = []

    for message in ordered:
        if message.content.strip():
            parts.append(message.content.strip())
        for attachment in message.attachments:
            try:
                ref, transcript = _process_attachment(
                    message,
                    attachment,
                    bucket_name=bucket_name,
                    conversation_id=conversation_id,
                    store=store,
                    transcriber=transcriber,
                    download=download,
                )
            except Exception as e:
                logger.warning(
                    "attachment skipped",
                    extra={
                        "extra_fields": safe_log_context(
                            message_hash=hash_for_log(message.message_id),
                            kind=attachment.get("kind"),
                            error_type=type(e).__name__,
                        )
                    },
                )
                continue
            if ref is not None:
                stored.append(ref)
            if transcript:
                parts.append(transcript)

    return AggregatedUnit(
        buffer_id=buffer_id,
        conversation_id=conversation_id,
        text=" ".join(parts),
        attachments=tuple(stored),
        message_count=len(ordered),
        message_ids=tuple(m.message_id for m in ordered),
    )
