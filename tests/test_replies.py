"""Tests for clarification reply handling."""

from __future__ import annotations

from contextlib import ExitStack
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from pacelane.domain.buffers import AppendResult
from pacelane.domain.dispatcher import DispatchError, DispatchResult
from pacelane.services.replies import handle_reply

from helpers import FakeObjectStore, T0, make_buffered, make_conversation, make_snapshot, mock_txn

MOD = "pacelane.services.replies"

PARTIAL = {
    "platform": "linkedin",
    "length": "medium",
    "tone": "professional",
    "angle": "insight",
    "topic": None,
    "refs": [],
    "original_content": "write a linkedin post",
}


def _awaiting(**overrides):
    values = dict(
        state="awaiting_clarification",
        pending_field="topic",
        partial_params=dict(PARTIAL),
        clarification_buffer_id="buf-9",
    )
    values.update(overrides)
    return make_conversation(**values)


@pytest.fixture
def reply():
    gate = MagicMock()
    with ExitStack() as stack:
        def p(name, **kwargs):
            return stack.enter_context(patch(f"{MOD}.{name}", **kwargs))

        mocks = SimpleNamespace(
            gate=gate,
            txn=p("txn", new=mock_txn()),
            load_reply=p("load_reply", return_value=(make_buffered(1, "our hiring plan"), False)),
            get_conversation=p("get_conversation", return_value=_awaiting()),
            adopt_reply=p("adopt_reply"),
            consume_reply=p("consume_reply", return_value=True),
            mark_buffering=p("mark_buffering"),
            begin_clarification=p("begin_clarification"),
            clear_clarification=p("clear_clarification"),
            get_gate=p("get_gate", return_value=gate),
            complete_order=p(
                "complete_order",
                return_value=DispatchResult(order_id="order-1", job_id="job-1", created=True),
            ),
            schedule_flush=p("schedule_flush"),
            get_tasks_client=p("get_tasks_client"),
            get_llm_client=p("get_llm_client", return_value=None),
            get_object_store=p("get_object_store", return_value=FakeObjectStore()),
        )
        yield mocks


def test_unknown_reply(reply):
    reply.load_reply.return_value = None
    assert handle_reply("conv-1", "m1", now=T0).status == "unknown"
    reply.consume_reply.assert_not_called()


def test_already_consumed_is_duplicate(reply):
    reply.load_reply.return_value = (make_buffered(1, "x"), True)
    assert handle_reply("conv-1", "m1", now=T0).status == "duplicate"
    reply.complete_order.assert_not_called()


def test_lost_consume_race_is_duplicate(reply):
    reply.consume_reply.return_value = False
    assert handle_reply("conv-1", "m1", now=T0).status == "duplicate"
    reply.complete_order.assert_not_called()
    reply.clear_clarification.assert_not_called()


def test_topic_answer_completes_order(reply):
    outcome = handle_reply("conv-1", "m1", now=T0)

    assert outcome.status == "completed"
    assert outcome.order_id == "order-1"
    args, kwargs = reply.complete_order.call_args
    assert args[1].topic == "our hiring plan"
    assert args[1].platform == "linkedin"
    assert kwargs["buffer_id"] == "buf-9"
    assert kwargs["original_content"] == "write a linkedin post"
    reply.clear_clarification.assert_called_once()
    reply.gate.send.assert_not_called()


def test_empty_answer_asks_again(reply):
    reply.load_reply.return_value = (make_buffered(1, "   "), False)

    outcome = handle_reply("conv-1", "m1", now=T0)

    assert outcome.status == "asked"
    assert outcome.field == "topic"
    kwargs = reply.begin_clarification.call_args.kwargs
    assert kwargs["pending_field"] == "topic"
    assert kwargs["buffer_id"] is None
    assert kwargs["partial_params"]["original_content"] == "write a linkedin post"
    assert reply.gate.send.call_args.args[0].kind == "clarification"
    reply.complete_order.assert_not_called()


def test_undelivered_question_stops_waiting(reply):
    reply.load_reply.return_value = (make_buffered(1, "   "), False)
    reply.gate.send.return_value = False

    outcome = handle_reply("conv-1", "m1", now=T0)

    assert outcome.status == "failed"
    assert outcome.field == "topic"
    reply.begin_clarification.assert_called_once()
    reply.clear_clarification.assert_called_once()
    assert reply.clear_clarification.call_args.args[1] == "conv-1"
    reply.complete_order.assert_not_called()


def test_next_required_field_is_asked(reply, monkeypatch):
    monkeypatch.setenv("ORDER_REQUIRED_FIELDS", "topic,angle")
    partial = dict(PARTIAL, angle=None)
    reply.get_conversation.return_value = _awaiting(partial_params=partial)

    outcome = handle_reply("conv-1", "m1", now=T0)

    assert outcome.status == "asked"
    assert outcome.field == "angle"
    assert reply.begin_clarification.call_args.kwargs["partial_params"]["topic"] == "our hiring plan"


def test_cancel_abandons_silently(reply):
    reply.load_reply.return_value = (make_buffered(1, "Cancel!"), False)

    outcome = handle_reply("conv-1", "m1", now=T0)

    assert outcome.status == "cancelled"
    reply.clear_clarification.assert_called_once()
    reply.gate.send.assert_not_called()
    reply.complete_order.assert_not_called()


def test_reply_after_conversation_moved_on_joins_buffer(reply):
    reply.get_conversation.return_value = make_conversation(state="idle")
    reply.adopt_reply.return_value = AppendResult(
        buffer=make_snapshot(), appended=True, opened=True, forced=None
    )

    outcome = handle_reply("conv-1", "m1", now=T0)

    assert outcome.status == "adopted"
    reply.mark_buffering.assert_called_once()
    reply.schedule_flush.assert_called_once()
    reply.consume_reply.assert_not_called()


def test_adopt_enqueue_failure_is_logged(reply):
    reply.get_conversation.return_value = make_conversation(state="buffering")
    reply.adopt_reply.return_value = AppendResult(
        buffer=make_snapshot(), appended=True, opened=False, forced=None
    )
    reply.schedule_flush.side_effect = RuntimeError("queue down")

    assert handle_reply("conv-1", "m1", now=T0).status == "adopted"
    reply.mark_buffering.assert_not_called()


def test_missing_source_buffer_fails(reply):
    reply.get_conversation.return_value = _awaiting(clarification_buffer_id=None)

    assert handle_reply("conv-1", "m1", now=T0).status == "failed"
    reply.complete_order.assert_not_called()


def test_dispatch_failure(reply):
    reply.complete_order.side_effect = DispatchError("order")

    outcome = handle_reply("conv-1", "m1", now=T0)

    assert outcome.status == "failed"
    assert outcome.order_id is None
