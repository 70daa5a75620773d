"""Phone to user lookups and the resolved identity cache."""

from typing import Sequence

from psycopg2.extensions import cursor as PgCursor

# array_position keeps the caller's variant order: first variant wins
_FIND_MAPPING_SQL = """
SELECT user_id
FROM whatsapp_user_mappings
WHERE whatsapp_number = ANY(%s)
ORDER BY array_position(%s::text[], whatsapp_number)
LIMIT 1
"""

_FIND_PROFILE_BY_WHATSAPP_SQL = """
SELECT user_id
FROM profiles
WHERE whatsapp_number = ANY(%s)
ORDER BY array_position(%s::text[], whatsapp_number)
LIMIT 1
"""

_FIND_PROFILE_BY_PHONE_SQL = """
SELECT user_id
FROM profiles
WHERE phone_number = ANY(%s)
ORDER BY array_position(%s::text[], phone_number)
LIMIT 1
"""

_INSERT_MAPPING_SQL = """
INSERT INTO whatsapp_user_mappings (whatsapp_number, user_id)
VALUES (%s, %s)
ON CONFLICT (whatsapp_number) DO NOTHING
"""

_GET_IDENTITY_SQL = """
SELECT user_id, bucket_name
FROM contact_identities
WHERE contact_key = %s
"""

# A known user_id is never replaced; the bucket follows the first known user
_UPSERT_IDENTITY_SQL = """
INSERT INTO contact_identities (contact_key, user_id, bucket_name)
VALUES (%s, %s, %s)
ON CONFLICT (contact_key) DO UPDATE
SET user_id = COALESCE(contact_identities.user_id, EXCLUDED.user_id),
    bucket_name = CASE
        WHEN contact_identities.user_id IS NULL AND EXCLUDED.user_id IS NOT NULL
            THEN EXCLUDED.bucket_name
        ELSE contact_identities.bucket_name
    END,
    updated_at = now()
RETURNING user_id, bucket_name
"""


def _first_user(cur: PgCursor, sql: str, variants: Sequence[str]) -> str | None:
    if not variants:
        return None
    values = list(variants)
    cur.execute(sql, (values, values))
    row = cur.fetchone()
    return row[0] if row else None


def find_user_by_mapping(cur: PgCursor, variants: Sequence[str]) -> str | None:
    return _first_user(cur, _FIND_MAPPING_SQL, variants)


def find_profile_user(cur: PgCursor, variants: Sequence[str]) -> str | None:
    """Profile lookup: whatsapp_number first, then phone_number."""
    return _first_user(cur, _FIND_PROFILE_BY_WHATSAPP_SQL, variants) or _first_user(
        cur, _FIND_PROFILE_BY_PHONE_SQL, variants
    )


def insert_mapping(cur: PgCursor, whatsapp_number: str, user_id: str) -> bool:
    """Record phone -> user. Returns False if the number was already mapped."""
    cur.execute(_INSERT_MAPPING_SQL, (whatsapp_number, user_id))
    return cur.rowcount == 1


def get_identity(cur: PgCursor, contact_key: str) -> tuple[str | None, str] | None:
    """Cached (user_id, bucket_name) for a contact, None if never resolved."""
    cur.execute(_GET_IDENTITY_SQL, (contact_key,))
    row = cur.fetchone()
    return (row[0], row[1]) if row else None


def upsert_identity(
    cur: PgCursor, contact_key: str, user_id: str | None, bucket_name: str
) -> tuple[str | None, str]:
    """Insert or fill in the cached identity; returns the stored (user_id, bucket_name)."""
    cur.execute(_UPSERT_IDENTITY_SQL, (contact_key, user_id, bucket_name))
    row = cur.fetchone()
    return row[0], row[1]
