"""Per-identity bucket provisioning (idempotent create-if-absent)."""

from psycopg2.extensions import cursor as PgCursor

from pacelane.infra.object_store import (
    DEFAULT_LIFECYCLE,
    BucketAlreadyExistsError,
    LifecyclePolicy,
    ObjectStore,
)
from pacelane.observability.logging import get_logger
from pacelane.observability.redaction import safe_log_context

logger = get_logger(__name__)

_REGISTRY_HIT_SQL = "SELECT 1 FROM bucket_registry WHERE bucket_name = %s"

_REGISTRY_INSERT_SQL = """
INSERT INTO bucket_registry (bucket_name)
VALUES (%s)
ON CONFLICT (bucket_name) DO NOTHING
"""


class BucketProvisioningError(Exception):
    """Bucket could not be verified or created. Fatal for the current message."""

    pass


def _registry_has(cur: PgCursor | None, bucket_name: str) -> bool:
    if cur is None:
        return False
    try:
        cur.execute(_REGISTRY_HIT_SQL, (bucket_name,))
        return cur.fetchone() is not None
    except Exception:
        # Cache miss only costs an existence probe
        logger.warning(
            "bucket registry lookup failed",
            extra={"extra_fields": safe_log_context(bucket=bucket_name)},
        )
        return False


def _registry_add(cur: PgCursor | None, bucket_name: str) -> None:
    if cur is None:
        return
    try:
        cur.execute(_REGISTRY_INSERT_SQL, (bucket_name,))
    except Exception:
        logger.warning(
            "bucket registry insert failed",
            extra={"extra_fields": safe_log_context(bucket=bucket_name)},
        )


def ensure_bucket(
    store: ObjectStore,
    bucket_name: str,
    *,
    cur: PgCursor | None = None,
    lifecycle: LifecyclePolicy = DEFAULT_LIFECYCLE,
) -> bool:
    """Make sure bucket_name exists.

    Check-then-create; a concurrent creator winning the race is success.
    The registry table (when a cursor is given) skips the existence probe
    for buckets this service already saw.

    Returns:
        True if this call created the bucket, False if it already existed.

    Raises:
        BucketProvisioningError: If the store cannot be queried or written.
    """
    if _registry_has(cur, bucket_name):
        return False

    created = False
    try:
        if not store.exists(bucket_name):
            try:
                store.create(bucket_name, lifecycle)
                created = True
            except BucketAlreadyExistsError:
                logger.info(
                    "bucket created concurrently",
                    extra={"extra_fields": safe_log_context(bucket=bucket_name)},
                )
    except Exception as e:
        logger.error(
            "bucket provisioning failed",
            extra={
                "extra_fields": safe_log_context(bucket=bucket_name, error_type=type(e).__name__)
            },
        )
        raise BucketProvisioningError(bucket_name) from e

    _registry_add(cur, bucket_name)
    return created
