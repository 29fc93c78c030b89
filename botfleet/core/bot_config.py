from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from botfleet.core.types import Market

# Binance rejects market orders below ~5-10 quote units; bots must size above that.
MIN_ORDER_QUOTE_AMOUNT = 10.0


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class StrategySettings(_Frozen):
    type: Literal["ma_cross"] = "ma_cross"
    fast_period: int = Field(default=9, ge=1)
    slow_period: int = Field(default=21, ge=2)


class RiskSettings(_Frozen):
    order_quote_amount: float = 20.0
    leverage: int = Field(default=3, ge=1, le=125)
    quantity_step: float = Field(default=0.0001, gt=0)
    min_notional: float = Field(default=5.0, ge=0)
    stop_loss_percent: float = Field(default=1.0, gt=0)
    take_profit_percent: float = Field(default=1.5, gt=0)
    max_daily_loss_percent: float = Field(default=5.0, gt=0)
    max_total_loss_percent: float = Field(default=10.0, gt=0)
    # let stop-loss/take-profit exits through while the loss breaker is tripped
    close_when_blocked: bool = False

    @field_validator("order_quote_amount")
    @classmethod
    def _min_order_amount(cls, v: float) -> float:
        if v < MIN_ORDER_QUOTE_AMOUNT:
            raise ValueError(f"order_quote_amount must be >= {MIN_ORDER_QUOTE_AMOUNT}")
        return v


class PositionSettings(_Frozen):
    prevent_duplicate_orders: bool = True
    cooldown_candles: int = Field(default=3, ge=0)


class VirtualBalance(_Frozen):
    initial_quote_balance: float = 1000.0
    current_quote_balance: float = 1000.0
    current_base_balance: float = 0.0
    entry_price: float | None = None


class BotConfig(_Frozen):
    """
    One bot's configuration as last written by the admin side.

    Instances are immutable; the runtime loop re-reads a fresh one at the top of every tick
    and passes it by value through the tick pipeline.
    """

    id: str
    name: str = ""
    enabled: bool = False
    market: Market = Market.SPOT
    use_testnet: bool = True
    base_asset: str = "BTC"
    quote_asset: str = "USDT"
    interval: str = "1m"
    poll_ms: int = Field(default=5000, ge=0)
    dry_run: bool = True
    strategy: StrategySettings = Field(default_factory=StrategySettings)
    risk: RiskSettings = Field(default_factory=RiskSettings)
    position: PositionSettings = Field(default_factory=PositionSettings)
    virtual_balance: VirtualBalance = Field(default_factory=VirtualBalance)

    @model_validator(mode="after")
    def _check_periods(self) -> BotConfig:
        if self.strategy.fast_period >= self.strategy.slow_period:
            raise ValueError("strategy.fast_period must be smaller than strategy.slow_period")
        return self

    @property
    def symbol(self) -> str:
        return f"{self.base_asset}{self.quote_asset}".upper()

    @property
    def environment(self) -> str:
        return "testnet" if self.use_testnet else "mainnet"

    def with_virtual_balance(self, vb: VirtualBalance) -> BotConfig:
        return self.model_copy(update={"virtual_balance": vb})
