"""Tests for time utilities."""

from datetime import datetime, timedelta, timezone

from pacelane.infra.time import date_path, utc_now


def test_utc_now_is_aware_and_current():
    before = datetime.now(timezone.utc)
    now = utc_now()
    after = datetime.now(timezone.utc)

    assert now.tzinfo == timezone.utc
    assert before <= now <= after


def test_date_path_uses_utc_day():
    late_evening_sao_paulo = datetime(2025, 3, 10, 22, 30, tzinfo=timezone(timedelta(hours=-3)))
    assert date_path(late_evening_sao_paulo) == "2025-03-11"
