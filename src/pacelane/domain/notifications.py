"""Minimal-messaging policy.

The service stays silent by default. Only three kinds of outbound message
are ever sent: a blocking clarification, an error notice, and a "ready"
notice for users who opted in. Every send goes through NotificationGate.
"""

import os
import unicodedata
from dataclasses import dataclass, field
from typing import Callable, Literal, Sequence

from pacelane.chatwoot.outbound import QuickReply, send_message
from pacelane.infra.hashing import hash_for_log
from pacelane.observability.logging import get_logger
from pacelane.observability.redaction import safe_log_context

from .order_params import ORDER_FIELDS

logger = get_logger(__name__)

NoticeKind = Literal["clarification", "error", "ready", "acknowledgement", "confirmation"]

ALLOWED_KINDS = frozenset({"clarification", "error", "ready"})

DEFAULT_REQUIRED_FIELDS = ("topic",)

FIELD_OPTIONS: dict[str, tuple[QuickReply, ...]] = {
    "platform": (
        QuickReply("LinkedIn", "linkedin"),
        QuickReply("Instagram", "instagram"),
        QuickReply("Twitter", "twitter"),
        QuickReply("Blog", "blog"),
    ),
    "length": (
        QuickReply("Short", "short"),
        QuickReply("Medium", "medium"),
        QuickReply("Long", "long"),
    ),
    "tone": (
        QuickReply("Professional", "professional"),
        QuickReply("Casual", "casual"),
        QuickReply("Inspirational", "inspirational"),
        QuickReply("Educational", "educational"),
    ),
    "angle": (
        QuickReply("Insight", "insight"),
        QuickReply("Story", "story"),
        QuickReply("Tips", "tips"),
        QuickReply("Question", "question"),
    ),
    "topic": (),
}

CLARIFICATION_QUESTIONS: dict[str, str] = {
    "platform": "Which platform is this post for?",
    "length": "How long should it be?",
    "tone": "Which tone should it have?",
    "angle": "Which angle should the post take?",
    "topic": "What should the post be about? Reply with the topic in a few words.",
}

ERROR_REASONS: dict[str, str] = {
    "storage": "I couldn't save your message",
    "processing": "I couldn't process your messages",
    "order": "I couldn't register your content request",
    "enqueue": "I registered your request but couldn't start writing it",
}

CANCEL_WORDS = frozenset({"cancel", "cancelar", "stop", "parar", "deixa pra la"})


def required_fields() -> tuple[str, ...]:
    """Blocking order fields from ORDER_REQUIRED_FIELDS (comma list, default "topic")."""
    raw = os.environ.get("ORDER_REQUIRED_FIELDS")
    if not raw:
        return DEFAULT_REQUIRED_FIELDS
    fields = tuple(f.strip().lower() for f in raw.split(",") if f.strip().lower() in ORDER_FIELDS)
    return fields or DEFAULT_REQUIRED_FIELDS


@dataclass(frozen=True)
class Notice:
    kind: NoticeKind
    account_id: str
    conversation_id: str
    text: str
    options: tuple[QuickReply, ...] = field(default_factory=tuple)


def clarification_notice(account_id: str, conversation_id: str, field_name: str) -> Notice:
    return Notice(
        kind="clarification",
        account_id=account_id,
        conversation_id=conversation_id,
        text=CLARIFICATION_QUESTIONS[field_name],
        options=FIELD_OPTIONS.get(field_name, ()),
    )


def error_notice(account_id: str, conversation_id: str, stage: str) -> Notice:
    reason = ERROR_REASONS.get(stage, ERROR_REASONS["processing"])
    return Notice(
        kind="error",
        account_id=account_id,
        conversation_id=conversation_id,
        text=f"Sorry, {reason}. Please try sending it again in a few minutes.",
    )


def ready_notice(account_id: str, conversation_id: str, topic: str, platform: str) -> Notice:
    return Notice(
        kind="ready",
        account_id=account_id,
        conversation_id=conversation_id,
        text=(
            f"Your {platform} post about \"{topic}\" is ready. "
            "Open Pacelane to review and edit your draft."
        ),
    )


def _fold(value: str) -> str:
    stripped = unicodedata.normalize("NFKD", value.strip().lower())
    return "".join(c for c in stripped if not unicodedata.combining(c))


def interpret_answer(answer: str, options: Sequence[QuickReply]) -> str:
    """Map a reply onto an offered option (value, label or 1-based index).

    Anything else is taken as free text.
    """
    folded = _fold(answer)
    for option in options:
        if folded in (_fold(option.value), _fold(option.label)):
            return option.value
    if folded.isdigit() and 1 <= int(folded) <= len(options):
        return options[int(folded) - 1].value
    return answer.strip()


def is_cancel(answer: str) -> bool:
    return _fold(answer).strip(" .!") in CANCEL_WORDS


MessageSender = Callable[..., object]


class NotificationGate:
    """Single exit for outbound messages; enforces the minimal policy."""

    def __init__(self, sender: MessageSender = send_message) -> None:
        self._sender = sender

    def allows(self, notice: Notice, *, opted_in: bool = False) -> bool:
        if notice.kind not in ALLOWED_KINDS:
            return False
        if notice.kind == "ready":
            return opted_in
        return True

    def send(self, notice: Notice, *, opted_in: bool = False) -> bool:
        """Send if the policy allows. Returns True only when a message went out.

        Delivery failures are logged and swallowed; a notice must never break
        the pipeline that triggered it.
        """
        log_ctx = safe_log_context(
            kind=notice.kind,
            conversation_hash=hash_for_log(notice.conversation_id),
        )
        if not self.allows(notice, opted_in=opted_in):
            logger.info("notice suppressed by policy", extra={"extra_fields": log_ctx})
            return False
        try:
            self._sender(
                account_id=notice.account_id,
                conversation_id=notice.conversation_id,
                content=notice.text,
                options=notice.options or None,
            )
        except Exception as e:
            logger.error(
                "notice delivery failed",
                extra={"extra_fields": {**log_ctx, "error_type": type(e).__name__}},
            )
            return False
        return True


_gate: NotificationGate | None = None


def get_gate() -> NotificationGate:
    global _gate
    if _gate is None:
        _gate = NotificationGate()
    return _gate
