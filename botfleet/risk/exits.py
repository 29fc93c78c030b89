from __future__ import annotations

from botfleet.core.types import Close, DecisionReason, PositionSide, PositionSnapshot, Side


def position_pnl_percent(position: PositionSnapshot) -> float | None:
    """Unrealized P&L in percent of entry, positive when the position is in profit."""
    if not position.is_open or not position.entry_price:
        return None
    entry = float(position.entry_price)
    mark = float(position.mark_price) if position.mark_price else entry
    pct = (mark - entry) / entry * 100.0
    return pct if position.side == PositionSide.LONG else -pct


def closing_side(position: PositionSnapshot) -> Side:
    return Side.SELL if position.side == PositionSide.LONG else Side.BUY


def evaluate_exit(position: PositionSnapshot | None, stop_loss_pct: float, take_profit_pct: float) -> Close | None:
    if position is None:
        return None
    pnl = position_pnl_percent(position)
    if pnl is None:
        return None
    if pnl <= -float(stop_loss_pct):
        reason = DecisionReason.STOP_LOSS
    elif pnl >= float(take_profit_pct):
        reason = DecisionReason.TAKE_PROFIT
    else:
        return None
    return Close(reason=reason, qty=float(position.quantity), side=closing_side(position), pnl_percent=pnl)
