"""Identity resolution: WhatsApp sender -> internal user id and bucket.

Inbound phone formats are inconsistent (with or without country code, with
a trunk "0", JID suffixes), so lookups run against a small ordered set of
variants. Resolution never blocks intake: any failure degrades to an
anonymous, contact-scoped identity.
"""

import os
import re
from dataclasses import dataclass
from typing import Iterable

from pacelane.chatwoot.models import Sender
from pacelane.infra.db import txn
from pacelane.infra.hashing import hash_for_log, stable_hash
from pacelane.infra.repositories import identity_repository as repo
from pacelane.observability.logging import get_logger
from pacelane.observability.redaction import safe_log_context

logger = get_logger(__name__)

DEFAULT_BUCKET_PREFIX = "pacelane-whatsapp"
DEFAULT_COUNTRY_CODE = "55"

_MAX_BUCKET_NAME = 63
_NON_BUCKET_CHARS = re.compile(r"[^a-z0-9-]+")


@dataclass(frozen=True)
class ResolvedIdentity:
    """(external contact key, internal user id or None, bucket name)."""

    contact_key: str
    user_id: str | None
    bucket_name: str

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None

    @property
    def owner_id(self) -> str:
        """User id, or the synthetic contact-scoped id for anonymous senders."""
        return self.user_id or f"contact_{self.contact_key}"


def _country_code() -> str:
    return os.environ.get("DEFAULT_COUNTRY_CODE", DEFAULT_COUNTRY_CODE)


def _bucket_prefix() -> str:
    return os.environ.get("BUCKET_PREFIX", DEFAULT_BUCKET_PREFIX)


def normalize_phone(raw: str | None) -> str | None:
    """Canonical international form (+<digits>), or None when nothing usable.

    >>> normalize_phone("(11) 9999-8888")
    '+551199998888'
    """
    if not raw:
        return None
    # JIDs like "5511999998888@s.whatsapp.net"
    raw = raw.split("@", 1)[0]
    cleaned = re.sub(r"[^\d+]", "", raw)
    if cleaned.startswith("00"):
        cleaned = "+" + cleaned[2:]
    digits = cleaned.lstrip("+")
    if not digits.isdigit():
        return None

    if cleaned.startswith("+"):
        return "+" + digits
    if len(digits) == 11 and digits.startswith("0"):
        return f"+{_country_code()}{digits[1:]}"
    if len(digits) > 10:
        return "+" + digits
    if len(digits) == 10:
        return f"+{_country_code()}{digits}"
    return None


def phone_variants(raw: str | None) -> list[str]:
    """Ordered, de-duplicated lookup variants for a raw phone number."""
    normalized = normalize_phone(raw)
    if not normalized:
        return []

    digits = normalized[1:]
    variants = [normalized, digits]
    code = _country_code()
    if digits.startswith(code):
        national = digits[len(code):]
        variants += [national, "0" + national]

    seen: set[str] = set()
    ordered = []
    for v in variants:
        if v not in seen:
            seen.add(v)
            ordered.append(v)
    return ordered


def phone_candidates(sender: Sender) -> list[str]:
    """Raw phone candidates from a Chatwoot sender, most trusted first."""
    return [c for c in (sender.phone_number, sender.identifier) if c]


def bucket_name_for(contact_key: str, user_id: str | None) -> str:
    """Bucket for a user (hashed id) or an anonymous contact (sanitized key)."""
    prefix = _NON_BUCKET_CHARS.sub("-", _bucket_prefix().lower()).strip("-")
    if user_id:
        name = f"{prefix}-user-{stable_hash(user_id)}"
    else:
        suffix = _NON_BUCKET_CHARS.sub("-", contact_key.lower()).strip("-")
        name = f"{prefix}-contact-{suffix}"
    return name[:_MAX_BUCKET_NAME].rstrip("-")


def anonymous_identity(contact_key: str) -> ResolvedIdentity:
    return ResolvedIdentity(
        contact_key=contact_key,
        user_id=None,
        bucket_name=bucket_name_for(contact_key, None),
    )


def _all_variants(raw_phones: Iterable[str]) -> list[str]:
    ordered: list[str] = []
    for raw in raw_phones:
        for v in phone_variants(raw):
            if v not in ordered:
                ordered.append(v)
    return ordered


def resolve_in_txn(cur, contact_key: str, raw_phones: Iterable[str]) -> ResolvedIdentity:
    """Resolve using an open cursor. Raises on database errors."""
    cached = repo.get_identity(cur, contact_key)
    if cached and cached[0]:
        return ResolvedIdentity(contact_key=contact_key, user_id=cached[0], bucket_name=cached[1])

    variants = _all_variants(raw_phones)
    user_id = repo.find_user_by_mapping(cur, variants)
    if user_id is None:
        user_id = repo.find_profile_user(cur, variants)
        if user_id is not None:
            repo.insert_mapping(cur, variants[0], user_id)

    stored_user, stored_bucket = repo.upsert_identity(
        cur, contact_key, user_id, bucket_name_for(contact_key, user_id)
    )
    return ResolvedIdentity(contact_key=contact_key, user_id=stored_user, bucket_name=stored_bucket)


def resolve_identity(contact_key: str, raw_phones: Iterable[str]) -> ResolvedIdentity:
    """Resolve a sender in its own transaction; never raises.

    Returns the anonymous contact-scoped identity when nothing matches or the
    lookup fails.
    """
    try:
        with txn() as cur:
            identity = resolve_in_txn(cur, contact_key, raw_phones)
    except Exception:
        logger.exception(
            "identity resolution failed, continuing anonymously",
            extra={"extra_fields": safe_log_context(contact_hash=hash_for_log(contact_key))},
        )
        return anonymous_identity(contact_key)

    logger.info(
        "identity resolved",
        extra={
            "extra_fields": safe_log_context(
                contact_hash=hash_for_log(contact_key),
                anonymous=identity.is_anonymous,
            )
        },
    )
    return identity
