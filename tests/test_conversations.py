"""Tests for conversation state updates."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from pacelane.domain.conversations import (
    InvalidTransitionError,
    begin_clarification,
    check_transition,
    clear_clarification,
)

from helpers import T0, make_conversation


def _params(cur):
    return cur.execute.call_args.args[1]


class TestBeginClarification:
    def test_new_order_restarts_ttl(self):
        cur = MagicMock()
        later = T0 + timedelta(minutes=20)
        conversation = make_conversation(state="awaiting_clarification", pending_field="topic")

        begin_clarification(
            cur, conversation, pending_field="topic", partial_params={}, buffer_id="buf-2", now=later
        )

        params = _params(cur)
        assert params[2] == "buf-2"
        assert params[3] == later
        assert params[-1] == "conv-1"

    def test_follow_up_question_keeps_start(self):
        cur = MagicMock()
        conversation = make_conversation(state="awaiting_clarification", pending_field="topic")

        begin_clarification(
            cur, conversation, pending_field="angle", partial_params={"topic": "hiring"}, buffer_id=None, now=T0
        )

        params = _params(cur)
        assert params[0] == "angle"
        assert params[2] is None
        assert params[3] is None
        assert params[4] == T0

    def test_partial_params_stored_as_json(self):
        cur = MagicMock()
        begin_clarification(
            cur, make_conversation(), pending_field="topic", partial_params={"platform": "x"}, buffer_id="b", now=T0
        )
        assert _params(cur)[1] == '{"platform": "x"}'


def test_clear_only_touches_awaiting_rows():
    cur = MagicMock()
    clear_clarification(cur, "conv-1")

    sql = cur.execute.call_args.args[0]
    assert "state = 'awaiting_clarification'" in sql
    assert _params(cur) == ("conv-1",)


@pytest.mark.parametrize(
    ("current", "target"),
    [("idle", "buffering"), ("buffering", "awaiting_clarification"), ("awaiting_clarification", "idle")],
)
def test_allowed_transitions(current, target):
    check_transition(current, target)


def test_unknown_state_rejected():
    with pytest.raises(InvalidTransitionError):
        check_transition("idle", "archived")
