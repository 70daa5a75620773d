"""Order dispatch: persist the content order, then enqueue its job.

The two steps run in separate transactions. If the job cannot be enqueued
the order stays persisted for a later retry; nothing is rolled back.
Re-dispatching a buffer finds its existing order and re-enqueues under the
same job dedupe key, so one buffer yields at most one order and one job.
"""

from dataclasses import dataclass
from typing import Literal

from pacelane.infra.db import txn
from pacelane.infra.repositories import jobs_repository, orders_repository
from pacelane.observability.logging import get_logger
from pacelane.observability.redaction import safe_log_context

from .order_params import OrderParams

logger = get_logger(__name__)

DispatchStage = Literal["persist", "enqueue"]


class DispatchError(Exception):
    """Dispatch failed at `stage`; order_id is set when the order was persisted."""

    def __init__(self, stage: DispatchStage, order_id: str | None = None) -> None:
        super().__init__(f"dispatch failed at {stage}")
        self.stage = stage
        self.order_id = order_id


@dataclass(frozen=True)
class DispatchResult:
    order_id: str
    job_id: str
    created: bool


def dispatch_order(
    *,
    owner_id: str,
    params: OrderParams,
    buffer_id: str,
    conversation_id: str,
    original_content: str,
) -> DispatchResult:
    """Persist the order for a buffer and enqueue its content job.

    Raises:
        DispatchError: stage "persist" if the order was not stored, stage
            "enqueue" if it was stored but the job was not queued.
    """
    try:
        with txn() as cur:
            order_id, created = orders_repository.insert_order(
                cur,
                buffer_id=buffer_id,
                conversation_id=conversation_id,
                owner_id=owner_id,
                params=params,
                original_content=original_content,
            )
    except Exception as e:
        logger.exception(
            "order persistence failed",
            extra={"extra_fields": safe_log_context(buffer_id=buffer_id)},
        )
        raise DispatchError("persist") from e

    try:
        with txn() as cur:
            job_id = jobs_repository.enqueue_job(
                cur,
                jobs_repository.CONTENT_GENERATION_JOB,
                {"order_id": order_id},
                dedupe_key=f"order:{order_id}",
            )
    except Exception as e:
        logger.exception(
            "job enqueue failed, order kept",
            extra={"extra_fields": safe_log_context(order_id=order_id)},
        )
        raise DispatchError("enqueue", order_id=order_id) from e

    logger.info(
        "order dispatched",
        extra={
            "extra_fields": safe_log_context(
                order_id=order_id, job_id=job_id, created=created, platform=params.platform
            )
        },
    )
    return DispatchResult(order_id=order_id, job_id=job_id, created=created)
