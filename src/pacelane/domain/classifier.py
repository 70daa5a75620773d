"""Intent classification: NOTE (store silently) vs ORDER (create content).

The language model is tried first; any failure, including a malformed
answer, falls back to deterministic imperative patterns. Without a clear
ORDER signal the result is NOTE, since a false order is noisier than a
silently stored note.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, Protocol

from pacelane.observability.logging import get_logger
from pacelane.observability.redaction import safe_log_context

from .order_params import ORDER_FIELDS, extract_explicit_params, normalize_value

logger = get_logger(__name__)

Intent = Literal["note", "order"]
ClassificationSource = Literal["ai", "rules", "empty"]

RULE_ORDER_CONFIDENCE = 0.6
RULE_NOTE_CONFIDENCE = 0.5

_CONTENT_NOUNS_EN = r"(?:post|article|thread|caption|content|carousel|newsletter)s?"
_CONTENT_NOUNS_PT = r"(?:post|artigo|conte[uú]do|texto|carrossel|legenda|thread|publica[cç][aã]o)s?"

ORDER_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        rf"\b(?:write|draft|create|make|generate|compose|prepare)\b(?:\s+\S+){{0,4}}?\s+{_CONTENT_NOUNS_EN}\b",
        rf"\bturn\s+(?:this|that|it|these)\s+into\s+(?:an?\s+)?(?:\S+\s+)?{_CONTENT_NOUNS_EN}\b",
        r"\bcreate\s+content\b",
        rf"\b(?:escreva|escrever|escreve|crie|criar|cria|fa[cç]a|fazer|faz|gere|gerar|monte|montar|redija|prepare)\b(?:\s+\S+){{0,4}}?\s+{_CONTENT_NOUNS_PT}\b",
        rf"\btransform[ae]r?\s+(?:isso|isto|este|esse|esta|essa)\s+(?:\S+\s+)?em\s+(?:uma?\s+)?(?:\S+\s+)?{_CONTENT_NOUNS_PT}\b",
    )
)

CLASSIFIER_PROMPT = """You route WhatsApp messages for a content-creation assistant.
Decide whether the user is asking for a piece of content to be written (ORDER)
or is sharing a thought, note or reference to keep (NOTE). When unsure, answer NOTE.

For ORDER, extract only parameters the user actually expressed:
- platform: linkedin | instagram | twitter | blog
- length: short | medium | long
- tone: professional | casual | inspirational | educational
- angle: insight | story | tips | question
- topic: short free-text subject
- refs: list of hashtags or references mentioned

Answer with a JSON object:
{{"intent": "NOTE" | "ORDER", "confidence": 0.0-1.0, "params": {{...}}}}

Message:
\"\"\"{text}\"\"\"
"""


class ClassificationError(Exception):
    """The language model's answer could not be used."""

    pass


class LanguageClassifier(Protocol):
    def complete(self, prompt: str) -> dict[str, Any]: ...


@dataclass(frozen=True)
class Classification:
    intent: Intent
    confidence: float
    source: ClassificationSource
    explicit_params: dict[str, Any] = field(default_factory=dict)
    inferred_params: dict[str, Any] = field(default_factory=dict)


def _clean_inferred(params: Any) -> dict[str, Any]:
    if not isinstance(params, Mapping):
        return {}
    cleaned: dict[str, Any] = {}
    for name in ORDER_FIELDS:
        value = normalize_value(name, params.get(name))
        if value:
            cleaned[name] = value
    refs = params.get("refs")
    if isinstance(refs, list):
        cleaned["refs"] = [str(r) for r in refs if isinstance(r, (str, int))]
    return cleaned


def parse_model_answer(answer: Mapping[str, Any]) -> tuple[Intent, float, dict[str, Any]]:
    """Validate the model's JSON answer.

    Raises:
        ClassificationError: If intent is not NOTE/ORDER or confidence is not numeric.
    """
    intent = str(answer.get("intent", "")).strip().upper()
    if intent not in ("NOTE", "ORDER"):
        raise ClassificationError(f"unknown intent {intent!r}")

    raw_confidence = answer.get("confidence", 0.5)
    if isinstance(raw_confidence, bool) or not isinstance(raw_confidence, (int, float)):
        raise ClassificationError("confidence is not a number")
    confidence = min(max(float(raw_confidence), 0.0), 1.0)

    params = _clean_inferred(answer.get("params")) if intent == "ORDER" else {}
    return intent.lower(), confidence, params  # type: ignore[return-value]


def matches_order_pattern(text: str) -> bool:
    return any(p.search(text) for p in ORDER_PATTERNS)


def classify_with_rules(text: str) -> Classification:
    if matches_order_pattern(text):
        return Classification(
            intent="order",
            confidence=RULE_ORDER_CONFIDENCE,
            source="rules",
            explicit_params=extract_explicit_params(text),
        )
    return Classification(intent="note", confidence=RULE_NOTE_CONFIDENCE, source="rules")


def classify_with_model(text: str, llm: LanguageClassifier) -> Classification:
    """Raises ClassificationError (or the client's own errors) on failure."""
    answer = llm.complete(CLASSIFIER_PROMPT.format(text=text))
    intent, confidence, inferred = parse_model_answer(answer)
    explicit = extract_explicit_params(text) if intent == "order" else {}
    return Classification(
        intent=intent,
        confidence=confidence,
        source="ai",
        explicit_params=explicit,
        inferred_params=inferred,
    )


def classify(text: str, llm: LanguageClassifier | None) -> Classification:
    """Classify aggregated text. Never raises."""
    if not text.strip():
        return Classification(intent="note", confidence=1.0, source="empty")

    if llm is not None:
        try:
            return classify_with_model(text, llm)
        except Exception as e:
            logger.warning(
                "model classification unavailable, using rules",
                extra={"extra_fields": safe_log_context(error_type=type(e).__name__)},
            )

    result = classify_with_rules(text)
    logger.info(
        "classified by rules",
        extra={"extra_fields": safe_log_context(intent=result.intent, text_len=len(text))},
    )
    return result
