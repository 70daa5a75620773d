"""Structured JSON logging for Cloud Run.

One JSON object per line on stdout. Cloud Logging reads `severity`; the
rest of the pipeline reads `correlationId` to stitch a webhook to the
tasks it spawned.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from .correlation import get_correlation_id


def _service_name() -> str:
    return os.environ.get("K_SERVICE") or f"pacelane-{os.environ.get('APP_ROLE', 'public')}"


class JsonFormatter(logging.Formatter):
    """JSON formatter with correlation ID and structured extra fields."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "severity": record.levelname,
            "logger": record.name,
            "service": _service_name(),
            "message": record.getMessage(),
        }

        correlation_id = get_correlation_id()
        if correlation_id:
            log_obj["correlationId"] = correlation_id

        if record.exc_info:
            log_obj["error_type"] = record.exc_info[0].__name__ if record.exc_info[0] else None
            log_obj["exception"] = self.formatException(record.exc_info)

        # Callers pass safe_log_context() output here, never raw payloads
        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            for key, value in extra_fields.items():
                log_obj.setdefault(key, value)

        return json.dumps(log_obj, default=str)


def get_logger(name: str) -> logging.Logger:
    """Logger writing JSON lines to stdout, level from LOG_LEVEL (default INFO)."""
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)
        logger.setLevel(os.environ.get("LOG_LEVEL", "INFO").upper())
        logger.propagate = False

    return logger
