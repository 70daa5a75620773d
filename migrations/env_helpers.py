"""Database URL and SQL file helpers for Alembic migrations.

Kept apart from env.py so they import without an active alembic context.
"""

from __future__ import annotations

import os
from pathlib import Path
from urllib.parse import quote_plus, urlparse, urlunparse

SQL_DIR = Path(__file__).resolve().parent / "sql"

_DRIVER_SCHEME = "postgresql+psycopg2://"


def read_sql(filename: str) -> str:
    """Return the contents of migrations/sql/<filename>."""
    return (SQL_DIR / filename).read_text(encoding="utf-8")


def _read_value(dsn: str, i: int) -> tuple[str, int]:
    """Read one libpq value starting at i; quoted values honour backslash escapes."""
    if i < len(dsn) and dsn[i] == "'":
        i += 1
        out: list[str] = []
        while i < len(dsn) and dsn[i] != "'":
            if dsn[i] == "\\" and i + 1 < len(dsn):
                i += 1
            out.append(dsn[i])
            i += 1
        return "".join(out), i + 1
    end = dsn.find(" ", i)
    end = len(dsn) if end == -1 else end
    return dsn[i:end], end


def _parse_libpq_dsn(dsn: str) -> dict[str, str]:
    """Parse a libpq key=value DSN."""
    tokens: dict[str, str] = {}
    i = 0
    while i < len(dsn):
        if dsn[i] == " ":
            i += 1
            continue
        eq = dsn.find("=", i)
        if eq == -1:
            break
        key = dsn[i:eq].strip()
        tokens[key], i = _read_value(dsn, eq + 1)
    return tokens


def _libpq_dsn_to_url(dsn: str) -> str:
    """Convert a libpq DSN to a SQLAlchemy URL.

    A host starting with "/" is a Cloud SQL unix socket and moves to the
    query string; anything else is host:port.
    """
    tokens = _parse_libpq_dsn(dsn)
    password = tokens.get("password") or os.environ.get("DB_PASSWORD", "")

    auth = f"{quote_plus(tokens.get('user', ''))}:{quote_plus(password)}"
    dbname = quote_plus(tokens.get("dbname", ""))
    host = tokens.get("host", "localhost")

    if host.startswith("/"):
        return f"{_DRIVER_SCHEME}{auth}@/{dbname}?host={quote_plus(host)}"
    return f"{_DRIVER_SCHEME}{auth}@{host}:{tokens.get('port', '5432')}/{dbname}"


def _with_driver(url: str) -> str:
    for scheme in ("postgres://", "postgresql://"):
        if url.startswith(scheme):
            return _DRIVER_SCHEME + url[len(scheme):]
    return url


def _inject_password(url: str, password: str) -> str:
    parsed = urlparse(url)
    if parsed.password or not password:
        return url
    netloc = f"{quote_plus(parsed.username or '')}:{quote_plus(password)}@{parsed.hostname}"
    if parsed.port:
        netloc += f":{parsed.port}"
    return urlunparse(parsed._replace(netloc=netloc))


def _get_database_url() -> str:
    """SQLAlchemy URL from DATABASE_URL (URL or libpq DSN), DB_PASSWORD as fallback."""
    raw = os.environ.get("DATABASE_URL")
    if not raw:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    if "://" not in raw:
        return _libpq_dsn_to_url(raw)
    return _inject_password(_with_driver(raw), os.environ.get("DB_PASSWORD", ""))
