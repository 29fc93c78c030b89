from __future__ import annotations

from dataclasses import dataclass, field

from botfleet.risk.loss_breaker import LossBreaker


@dataclass
class BotRuntimeState:
    """
    In-memory counters of one running loop. Owned by that loop only and never persisted, so a
    worker restart resets cooldown and loss accumulators.
    """

    tick_count: int = 0
    last_order_tick: int | None = None
    breaker: LossBreaker = field(default_factory=LossBreaker)
    consecutive_failures: int = 0
    applied_leverage: int | None = None

    def begin_tick(self) -> int:
        self.tick_count += 1
        return self.tick_count

    def mark_order(self) -> None:
        self.last_order_tick = self.tick_count

    def ticks_since_last_order(self) -> int | None:
        if self.last_order_tick is None:
            return None
        return self.tick_count - self.last_order_tick

    def cooldown_active(self, cooldown_ticks: int) -> bool:
        since = self.ticks_since_last_order()
        if since is None or cooldown_ticks <= 0:
            return False
        return since < cooldown_ticks
