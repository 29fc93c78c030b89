from __future__ import annotations

from datetime import datetime, timedelta, timezone

from botfleet.core.types import DecisionReason
from botfleet.risk.loss_breaker import LossBreaker

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_daily_limit_is_a_percent_of_balance():
    b = LossBreaker(daily_reset_at=T0)
    b.record_loss(49.9)
    assert b.check(1000.0, 5.0, 10.0, T0).allowed is True

    b.record_loss(0.2)
    res = b.check(1000.0, 5.0, 10.0, T0)
    assert res.allowed is False
    assert res.reason == DecisionReason.MAX_DAILY_LOSS
    assert "MAX_DAILY_LOSS" in res.describe()


def test_daily_accumulator_resets_after_24h_but_total_does_not():
    b = LossBreaker(daily_reset_at=T0)
    b.record_loss(60.0)
    assert b.check(1000.0, 5.0, 10.0, T0 + timedelta(hours=1)).allowed is False

    later = T0 + timedelta(hours=24)
    assert b.check(1000.0, 5.0, 10.0, later).allowed is True
    assert b.daily_loss == 0.0
    assert b.total_loss == 60.0

    b.record_loss(45.0)
    res = b.check(1000.0, 5.0, 10.0, later)
    assert res.allowed is False
    assert res.reason == DecisionReason.MAX_TOTAL_LOSS


def test_gains_are_not_recorded():
    b = LossBreaker(daily_reset_at=T0)
    b.record_loss(-10.0)
    b.record_loss(0.0)
    assert b.daily_loss == 0.0 and b.total_loss == 0.0
