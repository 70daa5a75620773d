"""Time utilities for consistent timestamp handling."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def date_path(ts: datetime) -> str:
    """Return the YYYY-MM-DD prefix used for object paths."""
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%d")
