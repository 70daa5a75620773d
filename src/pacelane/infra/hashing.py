"""Hashing utilities for identifiers that must not appear raw in logs or names."""

import hashlib


def hash_for_log(value: str) -> str:
    """Non-reversible short hash for log correlation. First 12 chars of sha256."""
    return hashlib.sha256(value.encode()).hexdigest()[:12]


def stable_hash(value: str, length: int = 16) -> str:
    """Deterministic hex digest prefix, used in bucket names."""
    return hashlib.sha256(value.encode()).hexdigest()[:length]
