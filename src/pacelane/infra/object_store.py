"""Object storage for per-identity buckets (raw messages, audio, images).

Production backend is Google Cloud Storage via google-cloud-storage with
application default credentials. Tests substitute any object implementing
the ObjectStore protocol.
"""

import os
from dataclasses import dataclass
from typing import Protocol

from google.api_core import exceptions as gcp_exceptions
from google.cloud import storage

from pacelane.observability.logging import get_logger
from pacelane.observability.redaction import safe_log_context

logger = get_logger(__name__)


class BucketAlreadyExistsError(Exception):
    """Raised by ObjectStore.create when the bucket exists."""

    pass


@dataclass(frozen=True)
class LifecycleTransition:
    age_days: int
    storage_class: str


@dataclass(frozen=True)
class LifecyclePolicy:
    """Hot to archive tiering applied at bucket creation."""

    initial_storage_class: str
    transitions: tuple[LifecycleTransition, ...]


DEFAULT_LIFECYCLE = LifecyclePolicy(
    initial_storage_class="STANDARD",
    transitions=(
        LifecycleTransition(age_days=30, storage_class="NEARLINE"),
        LifecycleTransition(age_days=90, storage_class="COLDLINE"),
        LifecycleTransition(age_days=365, storage_class="ARCHIVE"),
    ),
)


class ObjectStore(Protocol):
    def exists(self, bucket_name: str) -> bool: ...

    def create(self, bucket_name: str, lifecycle: LifecyclePolicy) -> None: ...

    def put(self, bucket_name: str, path: str, data: bytes, content_type: str) -> None: ...


class GCSObjectStore:
    """ObjectStore on Google Cloud Storage."""

    def __init__(self, client: storage.Client | None = None, location: str | None = None) -> None:
        self._client = client or storage.Client()
        self._location = location or os.environ.get("GCS_BUCKET_LOCATION", "US-CENTRAL1")

    def exists(self, bucket_name: str) -> bool:
        return self._client.lookup_bucket(bucket_name) is not None

    def create(self, bucket_name: str, lifecycle: LifecyclePolicy) -> None:
        """Create bucket with lifecycle rules.

        Raises:
            BucketAlreadyExistsError: If GCS answers 409.
        """
        bucket = self._client.bucket(bucket_name)
        bucket.storage_class = lifecycle.initial_storage_class
        for transition in lifecycle.transitions:
            bucket.add_lifecycle_set_storage_class_rule(
                transition.storage_class, age=transition.age_days
            )
        try:
            self._client.create_bucket(bucket, location=self._location)
        except gcp_exceptions.Conflict as e:
            raise BucketAlreadyExistsError(bucket_name) from e
        logger.info(
            "bucket created",
            extra={"extra_fields": safe_log_context(bucket=bucket_name, location=self._location)},
        )

    def put(self, bucket_name: str, path: str, data: bytes, content_type: str) -> None:
        blob = self._client.bucket(bucket_name).blob(path)
        blob.upload_from_string(data, content_type=content_type)


_object_store: ObjectStore | None = None


def get_object_store() -> ObjectStore:
    """Process-wide object store, created on first use."""
    global _object_store
    if _object_store is None:
        _object_store = GCSObjectStore()
    return _object_store
