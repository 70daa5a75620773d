"""Database access layer using psycopg2.

Every pipeline step runs in one short txn(); row locks taken inside it
(conversation FOR UPDATE, the buffer flush UPDATE) are the only
cross-invocation synchronization the service relies on.
"""

import os
import re
from contextlib import contextmanager
from typing import Iterator
from urllib.parse import urlparse

import psycopg2
from psycopg2.extensions import connection as PgConnection, cursor as PgCursor

_DSN_PASSWORD_RE = re.compile(r"(^|\s)password\s*=")


def _dsn_has_password(dsn: str) -> bool:
    if "://" in dsn:
        return bool(urlparse(dsn).password)
    return bool(_DSN_PASSWORD_RE.search(dsn))


def get_conn() -> PgConnection:
    """Open a connection from DATABASE_URL.

    When the DSN carries no password and DB_PASSWORD is set (Secret Manager
    mount on Cloud Run), the password is passed separately.

    Raises:
        RuntimeError: If DATABASE_URL is not set.
        psycopg2.Error: On connection failure.
    """
    dsn = os.environ.get("DATABASE_URL")
    if not dsn:
        raise RuntimeError("DATABASE_URL environment variable not set")

    password = os.environ.get("DB_PASSWORD")
    if password and not _dsn_has_password(dsn):
        return psycopg2.connect(dsn, password=password)
    return psycopg2.connect(dsn)


@contextmanager
def txn(conn: PgConnection | None = None) -> Iterator[PgCursor]:
    """Commit on clean exit, roll back on exception.

    A connection opened here is closed on exit; a passed-in one is left open.
    """
    owns_conn = conn is None
    if owns_conn:
        conn = get_conn()

    try:
        with conn.cursor() as cur:
            yield cur
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        if owns_conn:
            conn.close()
