from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from botfleet.core.types import AccountSnapshot, Candle, OrderRequest, OrderResult, PositionSnapshot


class ExchangeApiError(RuntimeError):
    """Non-success HTTP response, with the parsed response body attached."""

    def __init__(self, status_code: int, body: Any) -> None:
        self.status_code = int(status_code)
        self.body = body
        self.code = body.get("code") if isinstance(body, dict) else None
        self.msg = body.get("msg") if isinstance(body, dict) else None
        super().__init__(f"Binance API error: http={self.status_code} code={self.code} msg={self.msg or body}")


class CredentialsMissingError(RuntimeError):
    pass


class ExchangeClient(ABC):
    """Market-data and order-execution API for one market (spot or futures) on one base URL."""

    @abstractmethod
    async def get_candles(self, symbol: str, interval: str, limit: int = 200) -> list[Candle]:
        """Most recent `limit` candles, oldest first."""
        raise NotImplementedError

    @abstractmethod
    async def get_account(self, quote_asset: str = "USDT") -> AccountSnapshot:
        raise NotImplementedError

    @abstractmethod
    async def get_positions(self, symbol: str) -> list[PositionSnapshot]:
        """Open derivative positions for `symbol`; spot markets have none."""
        raise NotImplementedError

    @abstractmethod
    async def set_leverage(self, symbol: str, leverage: int) -> int:
        raise NotImplementedError

    @abstractmethod
    async def place_order(self, req: OrderRequest) -> OrderResult:
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        raise NotImplementedError
