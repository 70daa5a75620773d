"""Downstream job queue (agent_jobs), consumed by the content job runner."""

import json
from datetime import datetime

from psycopg2.extensions import cursor as PgCursor

CONTENT_GENERATION_JOB = "content_generation"


def enqueue_job(
    cur: PgCursor,
    job_type: str,
    payload: dict,
    *,
    dedupe_key: str,
    run_at: datetime | None = None,
) -> str:
    """Insert a pending job and return its id.

    Idempotent by dedupe_key: a repeat returns the existing job's id.
    """
    cur.execute(
        """
        INSERT INTO agent_jobs (job_type, status, run_at, payload, dedupe_key)
        VALUES (%s, 'pending', COALESCE(%s, now()), %s::jsonb, %s)
        ON CONFLICT (dedupe_key) DO NOTHING
        RETURNING id
        """,
        (job_type, run_at, json.dumps(payload), dedupe_key),
    )
    row = cur.fetchone()
    if row is not None:
        return str(row[0])
    cur.execute("SELECT id FROM agent_jobs WHERE dedupe_key = %s", (dedupe_key,))
    return str(cur.fetchone()[0])
