from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union


class Market(str, Enum):
    SPOT = "spot"
    FUTURES = "futures"


class Side(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class PositionSide(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class Signal(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"
    HOLD = "HOLD"


class BotStatus(str, Enum):
    DISABLED = "DISABLED"
    RUNNING = "RUNNING"
    BLOCKED = "BLOCKED"
    ERROR = "ERROR"
    # process-wide: no usable credential set at all
    FATAL = "FATAL"


class DecisionReason(str, Enum):
    MA_CROSS = "MA_CROSS"
    HOLD = "HOLD"
    QTY_INVALID = "QTY_INVALID"
    COOLDOWN = "COOLDOWN"
    POSITION_EXISTS = "POSITION_EXISTS"
    STOP_LOSS = "STOP_LOSS"
    TAKE_PROFIT = "TAKE_PROFIT"
    MAX_DAILY_LOSS = "MAX_DAILY_LOSS"
    MAX_TOTAL_LOSS = "MAX_TOTAL_LOSS"
    SPOT_NO_SHORT = "SPOT_NO_SHORT"


def next_status(*, enabled: bool, blocked: bool = False, failed: bool = False) -> BotStatus:
    """Status a tick ends in. Failure wins over a breaker block; disabled short-circuits both."""
    if not enabled:
        return BotStatus.DISABLED
    if failed:
        return BotStatus.ERROR
    if blocked:
        return BotStatus.BLOCKED
    return BotStatus.RUNNING


@dataclass(frozen=True)
class Candle:
    symbol: str
    interval: str
    open_time: datetime
    close_time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class MarketSample:
    price: float | None
    fast: float | None
    slow: float | None
    signal: Signal


@dataclass(frozen=True)
class AccountSnapshot:
    quote_asset: str
    wallet_balance: float
    available_balance: float | None = None
    unrealized_pnl: float | None = None
    balances: dict[str, float] = field(default_factory=dict)
    virtual: bool = False
    initial_balance: float | None = None
    equity: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PositionSnapshot:
    symbol: str
    side: PositionSide | None = None
    quantity: float = 0.0
    entry_price: float | None = None
    mark_price: float | None = None
    unrealized_pnl: float | None = None

    @property
    def is_open(self) -> bool:
        return self.side is not None and self.quantity > 0

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["side"] = self.side.value if self.side else None
        return d


@dataclass(frozen=True)
class Buy:
    qty: float
    reason: DecisionReason = DecisionReason.MA_CROSS


@dataclass(frozen=True)
class Sell:
    qty: float
    reason: DecisionReason = DecisionReason.MA_CROSS


@dataclass(frozen=True)
class Close:
    reason: DecisionReason
    qty: float
    side: Side
    pnl_percent: float


@dataclass(frozen=True)
class NoAction:
    reason: DecisionReason


Decision = Union[Buy, Sell, Close, NoAction]


def decision_action(decision: Decision) -> str:
    if isinstance(decision, Buy):
        return "BUY"
    if isinstance(decision, Sell):
        return "SELL"
    if isinstance(decision, Close):
        return "CLOSE"
    if isinstance(decision, NoAction):
        return "NONE"
    raise TypeError(f"Unknown decision: {decision!r}")


@dataclass(frozen=True)
class OrderRequest:
    symbol: str
    side: Side
    quantity: float
    order_type: str = "MARKET"
    reduce_only: bool = False


@dataclass(frozen=True)
class OrderResult:
    order_id: str
    symbol: str
    side: Side
    quantity: float
    status: str
    avg_price: float | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ErrorDetail:
    message: str
    response: Any = None


@dataclass(frozen=True)
class DecisionRecord:
    action: str
    reason: str
    quantity: float | None
    signal: str
    price: float | None
    time: datetime
    dry_run: bool = False
    pnl_percent: float | None = None

    @classmethod
    def from_decision(
        cls,
        decision: Decision,
        *,
        sample: MarketSample,
        time: datetime,
        dry_run: bool,
        quantity: float | None = None,
    ) -> DecisionRecord:
        qty = quantity
        if isinstance(decision, (Buy, Sell, Close)):
            qty = decision.qty
        return cls(
            action=decision_action(decision),
            reason=decision.reason.value,
            quantity=qty,
            signal=sample.signal.value,
            price=sample.price,
            time=time,
            dry_run=dry_run,
            pnl_percent=decision.pnl_percent if isinstance(decision, Close) else None,
        )

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["time"] = self.time.isoformat()
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> DecisionRecord:
        return cls(
            action=d["action"],
            reason=d["reason"],
            quantity=d.get("quantity"),
            signal=d["signal"],
            price=d.get("price"),
            time=datetime.fromisoformat(d["time"]),
            dry_run=bool(d.get("dry_run", False)),
            pnl_percent=d.get("pnl_percent"),
        )


@dataclass
class BotStatusSnapshot:
    bot_id: str
    status: BotStatus
    updated_at: datetime
    config: dict[str, Any] | None = None
    market: MarketSample | None = None
    account: AccountSnapshot | None = None
    position: PositionSnapshot | None = None
    last_decision: DecisionRecord | None = None
    error: ErrorDetail | None = None

    @property
    def ok(self) -> bool:
        return self.status not in {BotStatus.ERROR, BotStatus.FATAL}

    def to_dict(self) -> dict[str, Any]:
        return {
            "bot_id": self.bot_id,
            "status": self.status.value,
            "ok": self.ok,
            "updated_at": self.updated_at.isoformat(),
            "config": self.config,
            "market": (
                {
                    "price": self.market.price,
                    "fast": self.market.fast,
                    "slow": self.market.slow,
                    "signal": self.market.signal.value,
                }
                if self.market
                else None
            ),
            "account": self.account.to_dict() if self.account else None,
            "position": self.position.to_dict() if self.position else None,
            "last_decision": self.last_decision.to_dict() if self.last_decision else None,
            "error": asdict(self.error) if self.error else None,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> BotStatusSnapshot:
        m = d.get("market")
        a = d.get("account")
        p = d.get("position")
        ld = d.get("last_decision")
        e = d.get("error")
        return cls(
            bot_id=d["bot_id"],
            status=BotStatus(d["status"]),
            updated_at=datetime.fromisoformat(d["updated_at"]),
            config=d.get("config"),
            market=(
                MarketSample(price=m.get("price"), fast=m.get("fast"), slow=m.get("slow"), signal=Signal(m["signal"]))
                if m
                else None
            ),
            account=AccountSnapshot(**a) if a else None,
            position=(
                PositionSnapshot(
                    symbol=p["symbol"],
                    side=PositionSide(p["side"]) if p.get("side") else None,
                    quantity=float(p.get("quantity", 0.0)),
                    entry_price=p.get("entry_price"),
                    mark_price=p.get("mark_price"),
                    unrealized_pnl=p.get("unrealized_pnl"),
                )
                if p
                else None
            ),
            last_decision=DecisionRecord.from_dict(ld) if ld else None,
            error=ErrorDetail(message=e.get("message", ""), response=e.get("response")) if e else None,
        )
