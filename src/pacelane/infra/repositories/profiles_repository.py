"""User profile reads: onboarding preferences and notification opt-in."""

from psycopg2.extensions import cursor as PgCursor

from pacelane.domain.order_params import UserPreferences


def get_preferences(cur: PgCursor, user_id: str | None) -> UserPreferences:
    """Stored preferences, empty for anonymous or unknown users."""
    if not user_id:
        return UserPreferences()
    cur.execute("SELECT preferences FROM profiles WHERE user_id = %s", (user_id,))
    row = cur.fetchone()
    return UserPreferences.from_json(row[0] if row else None)


def notify_on_ready(cur: PgCursor, user_id: str) -> bool:
    cur.execute("SELECT notify_on_ready FROM profiles WHERE user_id = %s", (user_id,))
    row = cur.fetchone()
    return bool(row and row[0])
