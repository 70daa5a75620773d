"""Chatwoot webhook adapter - validate and normalize payloads."""

import os
from datetime import datetime, timezone
from typing import Any

from .models import Attachment, ChatwootEvent, IgnoredEvent, MessageCreated, MessageKind, Sender

WHATSAPP_CHANNEL = "Channel::Whatsapp"
MESSAGE_CREATED = "message_created"

# Chatwoot sometimes serializes message_type as its enum ordinal
_MESSAGE_TYPE_ORDINALS = {0: "incoming", 1: "outgoing", 2: "activity", 3: "template"}


class InvalidPayloadError(Exception):
    """Raised when a Chatwoot payload has an invalid shape."""

    pass


def _id(value: Any, name: str) -> str:
    if isinstance(value, bool) or value is None or value == "":
        raise InvalidPayloadError(f"missing or invalid {name}")
    if not isinstance(value, (int, str)):
        raise InvalidPayloadError(f"missing or invalid {name}")
    return str(value)


def _direction(value: Any) -> str:
    if isinstance(value, int) and not isinstance(value, bool):
        return _MESSAGE_TYPE_ORDINALS.get(value, "unknown")
    return str(value or "").lower()


def _parse_created_at(value: Any) -> datetime:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise InvalidPayloadError("invalid created_at") from None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return datetime.now(timezone.utc)


def resolve_attachment_url(url: str) -> str:
    """Rebase relative Chatwoot URLs (e.g. "http:///rails/...") on CHATWOOT_BASE_URL."""
    base = os.environ.get("CHATWOOT_BASE_URL", "").rstrip("/")
    if url.startswith("http:///") or url.startswith("https:///"):
        path = url.split(":///", 1)[1]
        return f"{base}/{path}" if base else url
    if url.startswith("/"):
        return f"{base}{url}" if base else url
    return url


def _parse_attachments(raw: Any) -> tuple[Attachment, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise InvalidPayloadError("attachments must be a list")

    attachments = []
    for item in raw:
        if not isinstance(item, dict):
            raise InvalidPayloadError("attachment must be an object")
        data_url = item.get("data_url")
        if not data_url or not isinstance(data_url, str):
            raise InvalidPayloadError("attachment missing data_url")
        size = item.get("file_size")
        attachments.append(
            Attachment(
                attachment_id=_id(item.get("id"), "attachment id"),
                file_type=str(item.get("file_type") or ""),
                data_url=resolve_attachment_url(data_url),
                file_size=size if isinstance(size, int) else None,
                content_type=item.get("content_type") or None,
            )
        )
    return tuple(attachments)


def detect_kind(content_type: str | None, attachments: tuple[Attachment, ...]) -> MessageKind:
    """Message kind from the first attachment, else from Chatwoot's content_type."""
    if attachments:
        return attachments[0].kind
    if content_type in ("audio", "image", "file"):
        return content_type  # type: ignore[return-value]
    return "text"


def parse_event(payload: dict[str, Any]) -> ChatwootEvent:
    """Validate a Chatwoot webhook payload and return its tagged variant.

    Only incoming `message_created` events from an open WhatsApp conversation
    become `MessageCreated`; every other shape becomes `IgnoredEvent`.

    Raises:
        InvalidPayloadError: If a message_created payload is malformed.
    """
    if not isinstance(payload, dict):
        raise InvalidPayloadError("payload must be an object")

    event = str(payload.get("event") or "")
    if event != MESSAGE_CREATED:
        return IgnoredEvent(event=event, reason="unsupported_event")

    conversation = payload.get("conversation")
    if not isinstance(conversation, dict):
        raise InvalidPayloadError("missing conversation")

    if conversation.get("channel") != WHATSAPP_CHANNEL:
        return IgnoredEvent(event=event, reason="not_whatsapp")

    direction = _direction(payload.get("message_type"))
    if direction != "incoming":
        # Our own outbound messages come back as outgoing; dropping them avoids echo loops
        return IgnoredEvent(event=event, reason=f"direction_{direction}")

    if payload.get("private"):
        return IgnoredEvent(event=event, reason="private_note")

    status = conversation.get("status")
    if status is not None and status != "open":
        return IgnoredEvent(event=event, reason="conversation_not_open")

    attachments = _parse_attachments(payload.get("attachments"))
    content = payload.get("content") or ""
    if not isinstance(content, str):
        raise InvalidPayloadError("content must be a string")
    if not content.strip() and not attachments:
        return IgnoredEvent(event=event, reason="empty_message")

    sender = payload.get("sender")
    if not isinstance(sender, dict):
        raise InvalidPayloadError("missing sender")

    account = payload.get("account")
    account_id = account.get("id") if isinstance(account, dict) else None

    return MessageCreated(
        message_id=_id(payload.get("id"), "message id"),
        account_id=_id(account_id, "account id"),
        conversation_id=_id(conversation.get("id"), "conversation id"),
        sender=Sender(
            sender_id=_id(sender.get("id"), "sender id"),
            name=sender.get("name") or None,
            phone_number=sender.get("phone_number") or None,
            identifier=sender.get("identifier") or None,
        ),
        content=content.strip(),
        kind=detect_kind(payload.get("content_type"), attachments),
        created_at=_parse_created_at(payload.get("created_at")),
        attachments=attachments,
    )
