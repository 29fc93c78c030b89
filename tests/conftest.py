from __future__ import annotations

import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

import pytest

# Ensure `import botfleet.*` works when running tests without installing the package.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from botfleet.core.bot_config import BotConfig  # noqa: E402
from botfleet.core.config import _deep_merge  # noqa: E402
from botfleet.core.types import (  # noqa: E402
    AccountSnapshot,
    Candle,
    OrderRequest,
    OrderResult,
    PositionSnapshot,
)
from botfleet.data.sqlite_store import SQLiteBotStore  # noqa: E402
from botfleet.exchange.base import ExchangeClient  # noqa: E402

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def candles_from_closes(closes: list[float], symbol: str = "BTCUSDT", interval: str = "1m") -> list[Candle]:
    out = []
    for i, c in enumerate(closes):
        open_time = T0 + timedelta(minutes=i)
        out.append(
            Candle(
                symbol=symbol,
                interval=interval,
                open_time=open_time,
                close_time=open_time + timedelta(seconds=59, milliseconds=999),
                open=c,
                high=c,
                low=c,
                close=c,
                volume=1.0,
            )
        )
    return out


class FakeExchange(ExchangeClient):
    """In-memory exchange: fixed candles, scripted account/positions, records every write."""

    def __init__(self, closes: list[float] | None = None) -> None:
        self.closes = list(closes or [])
        self.account = AccountSnapshot(quote_asset="USDT", wallet_balance=1000.0, available_balance=1000.0)
        self.positions: list[PositionSnapshot] = []
        self.orders: list[OrderRequest] = []
        self.leverage_calls: list[tuple[str, int]] = []
        self.candle_calls = 0
        self.fail_candles: Exception | None = None
        self.closed = False

    async def get_candles(self, symbol: str, interval: str, limit: int = 200) -> list[Candle]:
        self.candle_calls += 1
        if self.fail_candles is not None:
            exc, self.fail_candles = self.fail_candles, None
            raise exc
        return candles_from_closes(self.closes[-limit:], symbol, interval)

    async def get_account(self, quote_asset: str = "USDT") -> AccountSnapshot:
        return self.account

    async def get_positions(self, symbol: str) -> list[PositionSnapshot]:
        return list(self.positions)

    async def set_leverage(self, symbol: str, leverage: int) -> int:
        self.leverage_calls.append((symbol, leverage))
        return leverage

    async def place_order(self, req: OrderRequest) -> OrderResult:
        self.orders.append(req)
        price = self.closes[-1] if self.closes else None
        return OrderResult(
            order_id=str(len(self.orders)),
            symbol=req.symbol,
            side=req.side,
            quantity=req.quantity,
            status="FILLED",
            avg_price=price,
        )

    async def close(self) -> None:
        self.closed = True


@pytest.fixture()
def make_bot() -> Callable[..., BotConfig]:
    def _make(**overrides: Any) -> BotConfig:
        base: dict[str, Any] = {"id": "b1", "name": "test bot", "enabled": True}
        return BotConfig.model_validate(_deep_merge(base, overrides))

    return _make


@pytest.fixture()
def store() -> SQLiteBotStore:
    s = SQLiteBotStore(":memory:")
    s.init_schema()
    yield s
    s.close()


@pytest.fixture()
def fake_exchange() -> FakeExchange:
    # rising closes: fast average above slow -> LONG
    return FakeExchange(closes=[100.0 + i for i in range(30)])


def write_raw_bot(store: SQLiteBotStore, bot_id: str, config: dict[str, Any]) -> None:
    """Store a config row as the admin side might, bypassing validation."""
    store._conn.execute(
        """
        INSERT INTO bots(id, name, enabled, config_json, created_at, updated_at) VALUES(?,?,?,?,?,?)
        ON CONFLICT(id) DO UPDATE SET config_json=excluded.config_json
        """,
        (bot_id, bot_id, 1, json.dumps(config), T0.isoformat(), T0.isoformat()),
    )
    store._conn.commit()


@pytest.fixture()
def raw_bot() -> Callable[..., None]:
    return write_raw_bot
