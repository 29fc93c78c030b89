from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from botfleet.core.bot_config import BotConfig, VirtualBalance
from botfleet.core.types import (
    Buy,
    Close,
    Decision,
    NoAction,
    OrderRequest,
    OrderResult,
    PositionSide,
    PositionSnapshot,
    Sell,
    Side,
)
from botfleet.exchange.base import ExchangeClient
from botfleet.execution.ledger import apply_fill


@dataclass(frozen=True)
class ExecutionResult:
    executed: bool
    side: Side | None = None
    quantity: float = 0.0
    price: float | None = None
    order: OrderResult | None = None
    # new virtual ledger after a simulated fill; the caller persists it
    ledger: VirtualBalance | None = None
    realized_pnl: float | None = None


def order_side(decision: Decision) -> tuple[Side, float, bool] | None:
    """(side, quantity, reduce_only) for decisions that trade, None otherwise."""
    if isinstance(decision, Buy):
        return Side.BUY, decision.qty, False
    if isinstance(decision, Sell):
        return Side.SELL, decision.qty, False
    if isinstance(decision, Close):
        return decision.side, decision.qty, True
    if isinstance(decision, NoAction):
        return None
    raise TypeError(f"Unknown decision: {decision!r}")


def estimate_close_pnl(position: PositionSnapshot | None, qty: float, price: float | None) -> float | None:
    if position is None or not position.is_open:
        return None
    if position.unrealized_pnl is not None and qty >= position.quantity:
        return float(position.unrealized_pnl)
    mark = price if price is not None else position.mark_price
    if position.entry_price is None or mark is None:
        return None
    diff = float(mark) - float(position.entry_price)
    return diff * qty if position.side == PositionSide.LONG else -diff * qty


class OrderGateway:
    """
    Executes an already-validated decision.

    dry_run bots get a deterministic virtual-ledger mutation with no network call; live bots get
    a signed market order. Exchange constraints are not re-checked here.
    """

    def __init__(self, client: ExchangeClient | None, *, timeout_sec: float | None = None) -> None:
        self._client = client
        self._timeout_sec = timeout_sec
        self._log = logging.getLogger("botfleet.execution")

    async def execute(
        self,
        cfg: BotConfig,
        decision: Decision,
        *,
        price: float | None,
        position: PositionSnapshot | None,
    ) -> ExecutionResult:
        order = order_side(decision)
        if order is None:
            return ExecutionResult(executed=False)
        side, qty, reduce_only = order
        if cfg.dry_run:
            return self._simulate(cfg, side, qty, price)
        return await self._live(cfg, side, qty, reduce_only, price, position, closing=isinstance(decision, Close))

    def _simulate(self, cfg: BotConfig, side: Side, qty: float, price: float | None) -> ExecutionResult:
        if price is None or price <= 0:
            raise ValueError(f"cannot simulate {side.value} without a price")
        fill = apply_fill(cfg.virtual_balance, side, qty, price)
        self._log.info(
            "[%s] simulated %s qty=%s price=%s quote=%.4f base=%.8f",
            cfg.id,
            side.value,
            qty,
            price,
            fill.balance.current_quote_balance,
            fill.balance.current_base_balance,
        )
        return ExecutionResult(
            executed=True,
            side=side,
            quantity=qty,
            price=price,
            ledger=fill.balance,
            realized_pnl=fill.realized_pnl,
        )

    async def _live(
        self,
        cfg: BotConfig,
        side: Side,
        qty: float,
        reduce_only: bool,
        price: float | None,
        position: PositionSnapshot | None,
        *,
        closing: bool,
    ) -> ExecutionResult:
        if self._client is None:
            raise RuntimeError("live execution requires an exchange client")
        req = OrderRequest(symbol=cfg.symbol, side=side, quantity=qty, reduce_only=reduce_only)
        call = self._client.place_order(req)
        if self._timeout_sec:
            order = await asyncio.wait_for(call, timeout=self._timeout_sec)
        else:
            order = await call
        fill_price = order.avg_price or price
        return ExecutionResult(
            executed=True,
            side=side,
            quantity=order.quantity,
            price=fill_price,
            order=order,
            realized_pnl=estimate_close_pnl(position, qty, fill_price) if closing else None,
        )
