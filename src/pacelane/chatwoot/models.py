"""Chatwoot webhook models.

Inbound payloads are parsed once at the boundary into a tagged variant:
`MessageCreated` for incoming WhatsApp messages the pipeline handles,
`IgnoredEvent` for everything else. Downstream code never probes raw dicts.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Union

MessageKind = Literal["text", "audio", "image", "file"]


@dataclass(frozen=True)
class Attachment:
    """Attachment reference as delivered by Chatwoot (data_url is fetchable)."""

    attachment_id: str
    file_type: str
    data_url: str
    file_size: int | None = None
    content_type: str | None = None

    @property
    def kind(self) -> MessageKind:
        marker = (self.content_type or self.file_type or "").lower()
        if marker.startswith("audio"):
            return "audio"
        if marker.startswith("image"):
            return "image"
        return "file"


@dataclass(frozen=True)
class Sender:
    """Chatwoot contact. phone_number and identifier are PII: never log."""

    sender_id: str
    name: str | None = None
    phone_number: str | None = None
    identifier: str | None = None


@dataclass(frozen=True)
class MessageCreated:
    """An incoming WhatsApp message on an open conversation."""

    message_id: str
    account_id: str
    conversation_id: str
    sender: Sender
    content: str
    kind: MessageKind
    created_at: datetime
    attachments: tuple[Attachment, ...] = field(default_factory=tuple)

    @property
    def contact_key(self) -> str:
        """External contact key, unique per sender within an account."""
        return f"{self.sender.sender_id}_account_{self.account_id}"


@dataclass(frozen=True)
class IgnoredEvent:
    """Any webhook the pipeline does not act on. Answered with a no-op 200."""

    event: str
    reason: str


ChatwootEvent = Union[MessageCreated, IgnoredEvent]
