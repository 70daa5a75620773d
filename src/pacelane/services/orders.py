"""Completed orders: dispatch with user-facing error notices, and ready notices."""

from __future__ import annotations

from pacelane.domain.conversations import Conversation, get_conversation
from pacelane.domain.dispatcher import DispatchError, DispatchResult, dispatch_order
from pacelane.domain.notifications import error_notice, get_gate, ready_notice
from pacelane.domain.order_params import OrderParams
from pacelane.infra.db import txn
from pacelane.infra.repositories.orders_repository import get_order
from pacelane.infra.repositories.profiles_repository import notify_on_ready
from pacelane.observability.logging import get_logger
from pacelane.observability.redaction import safe_log_context

logger = get_logger(__name__)

# Dispatcher stage -> error notice reason
_NOTICE_STAGE = {"persist": "order", "enqueue": "enqueue"}

# Aggregated text kept alongside partial params while a clarification is open
ORIGINAL_CONTENT_KEY = "original_content"


def complete_order(
    conversation: Conversation,
    params: OrderParams,
    *,
    buffer_id: str,
    original_content: str,
) -> DispatchResult:
    """Dispatch a complete order; on failure tell the user, then re-raise.

    Raises:
        DispatchError: propagated from the dispatcher after the error notice.
    """
    try:
        return dispatch_order(
            owner_id=conversation.owner_id,
            params=params,
            buffer_id=buffer_id,
            conversation_id=conversation.id,
            original_content=original_content,
        )
    except DispatchError as e:
        get_gate().send(
            error_notice(
                conversation.account_id,
                conversation.chatwoot_conversation_id,
                _NOTICE_STAGE[e.stage],
            )
        )
        raise


def notify_order_ready(order_id: str) -> bool:
    """Announce a finished order to users who opted in.

    Returns True only when a notice was sent. Anonymous owners never opt in.
    """
    with txn() as cur:
        order = get_order(cur, order_id)
        if order is None:
            logger.warning(
                "ready notice for unknown order",
                extra={"extra_fields": safe_log_context(order_id=order_id)},
            )
            return False
        conversation = get_conversation(cur, order.conversation_id)
        opted_in = bool(conversation and conversation.user_id) and notify_on_ready(
            cur, conversation.user_id
        )

    if conversation is None:
        return False

    return get_gate().send(
        ready_notice(
            conversation.account_id,
            conversation.chatwoot_conversation_id,
            topic=order.topic,
            platform=order.platform,
        ),
        opted_in=opted_in,
    )
