"""Tests for the message buffer policy and flush transition."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from pacelane.domain.buffers import (
    BufferPolicy,
    append_message,
    flush_reason,
    next_check_at,
    try_begin_flush,
)

from helpers import T0, make_event, make_snapshot

POLICY = BufferPolicy(
    quiet_window=timedelta(seconds=30),
    max_messages=50,
    max_age=timedelta(seconds=300),
)


class TestBufferPolicyFromEnv:
    def test_defaults(self):
        policy = BufferPolicy.from_env()
        assert policy == POLICY

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("BUFFER_QUIET_WINDOW_SECONDS", "5")
        monkeypatch.setenv("BUFFER_MAX_MESSAGES", "3")
        monkeypatch.setenv("BUFFER_MAX_AGE_SECONDS", "60")
        policy = BufferPolicy.from_env()
        assert policy.quiet_window == timedelta(seconds=5)
        assert policy.max_messages == 3
        assert policy.max_age == timedelta(seconds=60)

    @pytest.mark.parametrize("value", ["false", "0", "off", "no"])
    def test_buffering_disabled_flushes_each_message(self, value, monkeypatch):
        monkeypatch.setenv("BUFFERING_ENABLED", value)
        policy = BufferPolicy.from_env()
        buf = make_snapshot(message_count=1)
        assert policy.max_messages == 1
        assert flush_reason(buf, policy, T0) == "size"


class TestFlushReason:
    def test_waits_inside_quiet_window(self):
        buf = make_snapshot()
        assert flush_reason(buf, POLICY, T0 + timedelta(seconds=29)) is None

    def test_quiet_at_window_boundary(self):
        buf = make_snapshot()
        assert flush_reason(buf, POLICY, T0 + timedelta(seconds=30)) == "quiet"

    def test_size_ceiling(self):
        buf = make_snapshot(message_count=50)
        assert flush_reason(buf, POLICY, T0) == "size"

    def test_age_ceiling(self):
        buf = make_snapshot(last_message_at=T0 + timedelta(seconds=299))
        assert flush_reason(buf, POLICY, T0 + timedelta(seconds=300)) == "age"

    def test_ceilings_reported_before_quiet(self):
        buf = make_snapshot(message_count=50)
        assert flush_reason(buf, POLICY, T0 + timedelta(hours=1)) == "size"

    @pytest.mark.parametrize("status", ["flushing", "done"])
    def test_non_active_buffer_never_due(self, status):
        buf = make_snapshot(status=status, message_count=99)
        assert flush_reason(buf, POLICY, T0 + timedelta(hours=1)) is None

    def test_next_check_is_earliest_deadline(self):
        buf = make_snapshot(last_message_at=T0 + timedelta(seconds=280))
        assert next_check_at(buf, POLICY) == T0 + timedelta(seconds=300)
        fresh = make_snapshot()
        assert next_check_at(fresh, POLICY) == T0 + timedelta(seconds=30)


class TestBufferSimulation:
    def test_steady_messages_force_age_flush(self):
        """A message every 10s never leaves a quiet gap; the age ceiling fires at 300s."""
        buf = make_snapshot(message_count=1)
        flushes = []
        for second in range(1, 302):
            now = T0 + timedelta(seconds=second)
            if second % 10 == 0 and not flushes:
                buf = buf.with_message(now)
            reason = flush_reason(buf, POLICY, now)
            if reason and not flushes:
                flushes.append((second, reason))

        assert flushes == [(300, "age")]

    def test_rapid_messages_flush_once_after_quiet(self):
        buf = make_snapshot(message_count=1)
        buf = buf.with_message(T0 + timedelta(seconds=2))

        due = [
            s for s in range(0, 40)
            if flush_reason(buf, POLICY, T0 + timedelta(seconds=s)) is not None
        ]
        assert buf.message_count == 2
        assert due[0] == 32

    def test_window_start_never_after_last_message(self):
        buf = make_snapshot()
        for s in (5, 3, 8):
            buf = buf.with_message(T0 + timedelta(seconds=s))
            assert buf.window_start_at <= buf.last_message_at
        assert buf.last_message_at == T0 + timedelta(seconds=8)


def _row(buffer_id="buf-1", conversation_id="conv-1", status="active", start=T0, last=T0, count=1):
    return (buffer_id, conversation_id, status, start, last, count)


class TestTryBeginFlush:
    def test_winner_gets_flushing_snapshot(self):
        cur = MagicMock()
        cur.rowcount = 1
        cur.fetchone.return_value = _row(status="flushing", count=3)

        snap = try_begin_flush(cur, "buf-1", POLICY, T0 + timedelta(seconds=31))

        assert snap is not None
        assert snap.status == "flushing"
        assert snap.message_count == 3
        sql, params = cur.execute.call_args.args
        assert "status = 'active'" in sql
        assert params["buffer_id"] == "buf-1"
        assert params["quiet_cutoff"] == T0 + timedelta(seconds=1)
        assert params["age_cutoff"] == T0 + timedelta(seconds=31) - timedelta(seconds=300)
        assert params["max_messages"] == 50

    def test_loser_gets_none(self):
        cur = MagicMock()
        cur.rowcount = 0

        assert try_begin_flush(cur, "buf-1", POLICY, T0) is None
        cur.fetchone.assert_not_called()


class TestAppendMessage:
    def test_opens_buffer_and_appends(self):
        cur = MagicMock()
        cur.rowcount = 1
        cur.fetchone.side_effect = [
            None,  # no active buffer
            _row(count=0),  # opened
            _row(count=1),  # touched
        ]

        result = append_message(cur, conversation_id="conv-1", message=make_event(), policy=POLICY, now=T0)

        assert result.opened is True
        assert result.appended is True
        assert result.forced is None
        assert result.buffer.message_count == 1

    def test_duplicate_message_not_counted(self):
        cur = MagicMock()
        cur.rowcount = 0
        cur.fetchone.side_effect = [_row(count=4)]

        result = append_message(cur, conversation_id="conv-1", message=make_event(), policy=POLICY, now=T0)

        assert result.appended is False
        assert result.buffer.message_count == 4

    def test_size_ceiling_forces_flush(self):
        cur = MagicMock()
        cur.rowcount = 1
        cur.fetchone.side_effect = [_row(count=49), _row(count=50)]

        result = append_message(cur, conversation_id="conv-1", message=make_event(), policy=POLICY, now=T0)

        assert result.forced == "size"

    def test_quiet_is_never_forced_on_append(self):
        cur = MagicMock()
        cur.rowcount = 1
        stale = T0 - timedelta(seconds=60)
        cur.fetchone.side_effect = [_row(start=stale, last=stale), _row(start=stale, last=stale, count=2)]

        result = append_message(cur, conversation_id="conv-1", message=make_event(), policy=POLICY, now=T0)

        assert result.forced is None
