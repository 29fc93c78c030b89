from __future__ import annotations

from dataclasses import dataclass

from botfleet.core.bot_config import VirtualBalance
from botfleet.core.types import PositionSide, PositionSnapshot, Side

_EPS = 1e-12


@dataclass(frozen=True)
class LedgerFill:
    balance: VirtualBalance
    realized_pnl: float | None = None


def apply_fill(vb: VirtualBalance, side: Side, qty: float, price: float) -> LedgerFill:
    """
    Book a simulated market fill.

    BUY moves qty*price from quote to qty base; SELL is the exact inverse. The base balance may
    go negative, which is how a simulated futures short is represented. The entry price is the
    volume-weighted price of the open side and is re-based when the position flips.
    """
    qty = float(qty)
    price = float(price)
    notional = qty * price
    signed = qty if side == Side.BUY else -qty

    old_base = vb.current_base_balance
    new_base = old_base + signed
    quote = vb.current_quote_balance - notional if side == Side.BUY else vb.current_quote_balance + notional

    entry = vb.entry_price
    realized: float | None = None
    if abs(old_base) > _EPS and old_base * signed < 0:
        # reducing (possibly through zero): realize P&L on the closed part
        closed = min(abs(signed), abs(old_base))
        if entry is not None:
            realized = (price - entry) * closed if old_base > 0 else (entry - price) * closed
    if abs(new_base) <= _EPS:
        entry = None
    elif abs(old_base) <= _EPS or old_base * new_base < 0:
        entry = price
    elif old_base * signed > 0:
        prev = entry if entry is not None else price
        entry = (prev * abs(old_base) + price * qty) / abs(new_base)

    return LedgerFill(
        balance=vb.model_copy(
            update={
                "current_quote_balance": quote,
                "current_base_balance": new_base,
                "entry_price": entry,
            }
        ),
        realized_pnl=realized,
    )


def ledger_position(vb: VirtualBalance, symbol: str, mark_price: float | None) -> PositionSnapshot:
    base = vb.current_base_balance
    if abs(base) <= _EPS:
        return PositionSnapshot(symbol=symbol, mark_price=mark_price)
    unrealized = None
    if vb.entry_price is not None and mark_price is not None:
        unrealized = (float(mark_price) - vb.entry_price) * base
    return PositionSnapshot(
        symbol=symbol,
        side=PositionSide.LONG if base > 0 else PositionSide.SHORT,
        quantity=abs(base),
        entry_price=vb.entry_price,
        mark_price=mark_price,
        unrealized_pnl=unrealized,
    )


def ledger_equity(vb: VirtualBalance, mark_price: float | None) -> float:
    if mark_price is None:
        return vb.current_quote_balance
    return vb.current_quote_balance + vb.current_base_balance * float(mark_price)
