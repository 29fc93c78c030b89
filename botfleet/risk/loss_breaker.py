from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from botfleet.core.types import DecisionReason

DAILY_WINDOW = timedelta(hours=24)


@dataclass(frozen=True)
class BreakerCheck:
    allowed: bool
    reason: DecisionReason | None = None
    loss: float = 0.0
    limit: float = 0.0

    def describe(self) -> str:
        if self.allowed:
            return "ok"
        return f"loss limit reached: {self.reason.value if self.reason else '?'} ({self.loss:.2f} / {self.limit:.2f})"


@dataclass
class LossBreaker:
    """
    Daily and cumulative realized-loss accumulators for one running bot.

    The daily accumulator resets 24h after its last reset; the cumulative one only resets when
    the loop (and with it this object) is recreated.
    """

    daily_loss: float = 0.0
    total_loss: float = 0.0
    daily_reset_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def roll(self, now: datetime) -> None:
        if now - self.daily_reset_at >= DAILY_WINDOW:
            self.daily_loss = 0.0
            self.daily_reset_at = now

    def record_loss(self, amount: float) -> None:
        if amount <= 0:
            return
        self.daily_loss += float(amount)
        self.total_loss += float(amount)

    def check(self, balance: float, max_daily_pct: float, max_total_pct: float, now: datetime) -> BreakerCheck:
        self.roll(now)
        # limits follow the current balance, not the balance at bot creation
        daily_limit = float(balance) * float(max_daily_pct) / 100.0
        total_limit = float(balance) * float(max_total_pct) / 100.0
        if self.daily_loss >= daily_limit:
            return BreakerCheck(False, DecisionReason.MAX_DAILY_LOSS, self.daily_loss, daily_limit)
        if self.total_loss >= total_limit:
            return BreakerCheck(False, DecisionReason.MAX_TOTAL_LOSS, self.total_loss, total_limit)
        return BreakerCheck(True)
