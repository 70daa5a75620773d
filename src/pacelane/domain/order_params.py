"""Content order parameters and their resolution.

Each field resolves through one ordered chain:
explicit (said in the message) > AI-inferred > profile preference > system default.
Topic has no default. Fields configured as required skip the system default
and block the order until clarified.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Mapping

ORDER_FIELDS = ("platform", "length", "tone", "angle", "topic")

SYSTEM_DEFAULTS: dict[str, str] = {
    "platform": "linkedin",
    "length": "medium",
    "tone": "professional",
    "angle": "insight",
}

# Canonical value -> accepted spellings (English and Portuguese)
PLATFORM_ALIASES: dict[str, tuple[str, ...]] = {
    "linkedin": ("linkedin", "linked in"),
    "instagram": ("instagram", "insta", "ig"),
    "twitter": ("twitter", "x", "tweet", "tuite"),
    "blog": ("blog", "blog post", "artigo de blog"),
}

LENGTH_ALIASES: dict[str, tuple[str, ...]] = {
    "short": ("short", "curto", "curta", "pequeno", "pequena"),
    "medium": ("medium", "médio", "medio", "média", "media"),
    "long": ("long", "longo", "longa", "grande"),
}

TONE_ALIASES: dict[str, tuple[str, ...]] = {
    "professional": ("professional", "profissional", "formal"),
    "casual": ("casual", "informal", "descontraído", "descontraido"),
    "inspirational": ("inspirational", "inspiring", "inspirador", "inspiradora"),
    "educational": ("educational", "educativo", "educativa", "didático", "didatico"),
}

ANGLE_ALIASES: dict[str, tuple[str, ...]] = {
    "insight": ("insight", "insights"),
    "story": ("story", "storytelling", "história", "historia"),
    "tips": ("tips", "how-to", "how to", "dicas"),
    "question": ("question", "pergunta"),
}

FIELD_ALIASES: dict[str, dict[str, tuple[str, ...]]] = {
    "platform": PLATFORM_ALIASES,
    "length": LENGTH_ALIASES,
    "tone": TONE_ALIASES,
    "angle": ANGLE_ALIASES,
}

# Aliases too ambiguous to spot inside free text ("x", "ig", "media"...)
_TEXT_UNSAFE = {"x", "ig", "media", "média", "grande", "formal", "question", "pergunta", "story"}

_TOPIC_RE = re.compile(
    r"\b(?:about|regarding|sobre|a respeito de)\s+(?P<topic>[^\n.!?]+)",
    re.IGNORECASE,
)
_TOPIC_LEADING_WORDS = re.compile(
    r"^(?:our|my|the|a|an|nosso|nossa|nossos|nossas|meu|minha|o|os|as)\s+",
    re.IGNORECASE,
)
_HASHTAG_RE = re.compile(r"#(\w+)", re.UNICODE)

MAX_TOPIC_LENGTH = 200


@dataclass(frozen=True)
class UserPreferences:
    """Onboarding defaults stored on the user's profile."""

    platform: str | None = None
    tone: str | None = None
    length: str | None = None
    industry: str | None = None

    @classmethod
    def from_json(cls, data: Mapping[str, Any] | None) -> "UserPreferences":
        data = data or {}
        return cls(
            platform=normalize_value("platform", data.get("platform")),
            tone=normalize_value("tone", data.get("tone")),
            length=normalize_value("length", data.get("length")),
            industry=data.get("industry") or None,
        )


@dataclass(frozen=True)
class OrderParams:
    platform: str | None
    length: str | None
    tone: str | None
    angle: str | None
    topic: str | None
    refs: tuple[str, ...] = field(default_factory=tuple)

    def missing(self, required: tuple[str, ...]) -> list[str]:
        """Required fields still without a value, in ORDER_FIELDS order."""
        return [f for f in ORDER_FIELDS if f in required and not getattr(self, f)]

    def to_json(self) -> dict[str, Any]:
        return {
            "platform": self.platform,
            "length": self.length,
            "tone": self.tone,
            "angle": self.angle,
            "topic": self.topic,
            "refs": list(self.refs),
        }


def normalize_value(field_name: str, raw: Any) -> str | None:
    """Map a spelling onto its canonical value; free-text fields pass through trimmed."""
    if raw is None:
        return None
    value = str(raw).strip()
    if not value:
        return None
    if field_name == "topic":
        return value[:MAX_TOPIC_LENGTH]
    lowered = value.lower()
    for canonical, spellings in FIELD_ALIASES.get(field_name, {}).items():
        if lowered == canonical or lowered in spellings:
            return canonical
    return None


def _find_in_text(field_name: str, text: str) -> str | None:
    lowered = text.lower()
    for canonical, spellings in FIELD_ALIASES[field_name].items():
        for spelling in spellings:
            if spelling in _TEXT_UNSAFE:
                continue
            if re.search(rf"(?<!\w){re.escape(spelling)}(?!\w)", lowered):
                return canonical
    return None


def extract_topic(text: str) -> str | None:
    match = _TOPIC_RE.search(text)
    if not match:
        return None
    topic = _TOPIC_LEADING_WORDS.sub("", match.group("topic").strip())
    topic = topic.strip(" ,;:")
    return topic[:MAX_TOPIC_LENGTH] or None


def extract_explicit_params(text: str) -> dict[str, Any]:
    """Parameters stated literally in the message. Deterministic, no AI."""
    params: dict[str, Any] = {}
    for name in FIELD_ALIASES:
        value = _find_in_text(name, text)
        if value:
            params[name] = value
    topic = extract_topic(text)
    if topic:
        params["topic"] = topic
    refs = _HASHTAG_RE.findall(text)
    if refs:
        params["refs"] = list(dict.fromkeys(refs))
    return params


def _first(field_name: str, *candidates: Any) -> str | None:
    for candidate in candidates:
        value = normalize_value(field_name, candidate)
        if value:
            return value
    return None


def resolve_platform(
    explicit: Mapping, inferred: Mapping, prefs: UserPreferences,
    default: str | None = SYSTEM_DEFAULTS["platform"],
) -> str | None:
    """explicit > AI > profile.platform > default ("linkedin")."""
    return _first(
        "platform", explicit.get("platform"), inferred.get("platform"), prefs.platform
    ) or default


def resolve_length(
    explicit: Mapping, inferred: Mapping, prefs: UserPreferences,
    default: str | None = SYSTEM_DEFAULTS["length"],
) -> str | None:
    """explicit > AI > profile.length > default ("medium")."""
    return _first(
        "length", explicit.get("length"), inferred.get("length"), prefs.length
    ) or default


def resolve_tone(
    explicit: Mapping, inferred: Mapping, prefs: UserPreferences,
    default: str | None = SYSTEM_DEFAULTS["tone"],
) -> str | None:
    """explicit > AI > profile.tone > default ("professional")."""
    return _first(
        "tone", explicit.get("tone"), inferred.get("tone"), prefs.tone
    ) or default


def resolve_angle(
    explicit: Mapping, inferred: Mapping, prefs: UserPreferences,
    default: str | None = SYSTEM_DEFAULTS["angle"],
) -> str | None:
    """explicit > AI > default ("insight"). Profiles carry no angle preference."""
    return _first("angle", explicit.get("angle"), inferred.get("angle")) or default


def resolve_topic(
    explicit: Mapping, inferred: Mapping, prefs: UserPreferences,
    default: str | None = None,
) -> str | None:
    """explicit > AI. No default: a missing topic is left for clarification."""
    return _first("topic", explicit.get("topic"), inferred.get("topic")) or default


def resolve_refs(explicit: Mapping, inferred: Mapping) -> tuple[str, ...]:
    refs: list[str] = []
    for source in (explicit.get("refs"), inferred.get("refs")):
        if isinstance(source, (list, tuple)):
            refs.extend(str(r).lstrip("#") for r in source if str(r).strip())
    return tuple(dict.fromkeys(refs))


_RESOLVERS = {
    "platform": resolve_platform,
    "length": resolve_length,
    "tone": resolve_tone,
    "angle": resolve_angle,
    "topic": resolve_topic,
}


def resolve_order_params(
    explicit: Mapping[str, Any],
    inferred: Mapping[str, Any],
    prefs: UserPreferences,
    required: tuple[str, ...] = ("topic",),
) -> OrderParams:
    """Resolve every field. Required fields skip the system default tier."""
    values = {}
    for name, resolver in _RESOLVERS.items():
        if name in required:
            values[name] = resolver(explicit, inferred, prefs, default=None)
        else:
            values[name] = resolver(explicit, inferred, prefs)
    return OrderParams(refs=resolve_refs(explicit, inferred), **values)


def params_from_json(data: Mapping[str, Any]) -> OrderParams:
    """Rebuild params persisted on a conversation awaiting clarification."""
    return OrderParams(
        platform=data.get("platform") or None,
        length=data.get("length") or None,
        tone=data.get("tone") or None,
        angle=data.get("angle") or None,
        topic=data.get("topic") or None,
        refs=tuple(data.get("refs") or ()),
    )
