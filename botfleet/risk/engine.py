from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from botfleet.core.bot_config import BotConfig
from botfleet.core.types import (
    BotStatus,
    Buy,
    Decision,
    DecisionReason,
    Market,
    MarketSample,
    NoAction,
    PositionSide,
    PositionSnapshot,
    Sell,
    Signal,
)
from botfleet.engine.state import BotRuntimeState
from botfleet.risk.exits import evaluate_exit
from botfleet.risk.sizing import floor_to_step, order_quantity, quantity_valid


@dataclass(frozen=True)
class RiskOutcome:
    status: BotStatus
    decision: Decision
    detail: str | None = None
    # sized entry quantity, kept for the audit record even when the entry is rejected
    quantity: float | None = None


class RiskEngine:
    """
    Ordered per-tick checks; each stage may short-circuit the rest:

    (a) loss breaker: BLOCKED with no action, exits included unless `risk.close_when_blocked`;
    (b) stop-loss / take-profit on an open position: forced full close, overriding the signal;
    (c) entry gating: quantity, cooldown, duplicate position, then the signal itself.
    """

    def evaluate(
        self,
        cfg: BotConfig,
        state: BotRuntimeState,
        sample: MarketSample,
        *,
        balance: float,
        position: PositionSnapshot | None,
        now: datetime,
    ) -> RiskOutcome:
        risk = cfg.risk
        breaker = state.breaker.check(balance, risk.max_daily_loss_percent, risk.max_total_loss_percent, now)
        if not breaker.allowed:
            if risk.close_when_blocked:
                close = evaluate_exit(position, risk.stop_loss_percent, risk.take_profit_percent)
                if close is not None:
                    return RiskOutcome(BotStatus.BLOCKED, close, breaker.describe())
            return RiskOutcome(BotStatus.BLOCKED, NoAction(breaker.reason or DecisionReason.HOLD), breaker.describe())

        close = evaluate_exit(position, risk.stop_loss_percent, risk.take_profit_percent)
        if close is not None:
            return RiskOutcome(BotStatus.RUNNING, close, quantity=close.qty)

        return self._entry(cfg, state, sample, position)

    def _entry(
        self,
        cfg: BotConfig,
        state: BotRuntimeState,
        sample: MarketSample,
        position: PositionSnapshot | None,
    ) -> RiskOutcome:
        risk = cfg.risk
        qty = order_quantity(risk.order_quote_amount, sample.price, risk.quantity_step)

        def _none(reason: DecisionReason) -> RiskOutcome:
            return RiskOutcome(BotStatus.RUNNING, NoAction(reason), quantity=qty)

        if not quantity_valid(qty, sample.price, min_qty=risk.quantity_step, min_notional=risk.min_notional):
            return _none(DecisionReason.QTY_INVALID)
        if state.cooldown_active(cfg.position.cooldown_candles):
            return _none(DecisionReason.COOLDOWN)

        has_position = position is not None and position.is_open
        if has_position and cfg.position.prevent_duplicate_orders:
            return _none(DecisionReason.POSITION_EXISTS)

        side = position.side if has_position else None
        if sample.signal == Signal.LONG and side != PositionSide.LONG:
            return RiskOutcome(BotStatus.RUNNING, Buy(qty), quantity=qty)
        if sample.signal == Signal.SHORT and side != PositionSide.SHORT:
            if cfg.market == Market.SPOT:
                # spot can only sell what it holds
                if side != PositionSide.LONG:
                    return _none(DecisionReason.SPOT_NO_SHORT)
                qty = min(qty, floor_to_step(position.quantity, risk.quantity_step))
                if not quantity_valid(qty, sample.price, min_qty=risk.quantity_step, min_notional=risk.min_notional):
                    return _none(DecisionReason.QTY_INVALID)
            return RiskOutcome(BotStatus.RUNNING, Sell(qty), quantity=qty)
        return _none(DecisionReason.HOLD)
