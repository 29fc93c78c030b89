from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from urllib.parse import urlencode

import httpx

from botfleet.core.config import ExchangeConfig
from botfleet.core.types import (
    AccountSnapshot,
    Candle,
    Market,
    OrderRequest,
    OrderResult,
    PositionSide,
    PositionSnapshot,
    Side,
)
from botfleet.exchange.auth import ApiKeys, encode_params, signed_query
from botfleet.exchange.base import CredentialsMissingError, ExchangeApiError, ExchangeClient
from botfleet.exchange.rate_limiter import SimpleRateLimiter

_PATHS: dict[Market, dict[str, str]] = {
    Market.SPOT: {
        "time": "/api/v3/time",
        "klines": "/api/v3/klines",
        "account": "/api/v3/account",
        "order": "/api/v3/order",
    },
    Market.FUTURES: {
        "time": "/fapi/v1/time",
        "klines": "/fapi/v1/klines",
        "account": "/fapi/v2/account",
        "positions": "/fapi/v2/positionRisk",
        "leverage": "/fapi/v1/leverage",
        "order": "/fapi/v1/order",
    },
}

# refresh the server clock offset every ~10 minutes
_TIME_SYNC_EVERY_MS = 10 * 60 * 1000


def resolve_base_url(cfg: ExchangeConfig, market: Market, use_testnet: bool) -> str:
    return cfg.base_url(market, use_testnet)


def _fmt_qty(qty: float) -> str:
    # Binance rejects quantities with more precision than the lot step, trailing zeros included
    return format(Decimal(str(qty)).normalize(), "f")


def _ms_to_dt(ms: Any) -> datetime:
    return datetime.fromtimestamp(int(ms) / 1000.0, tz=timezone.utc)


class BinanceClient(ExchangeClient):
    def __init__(
        self,
        market: Market,
        base_url: str,
        keys: ApiKeys | None = None,
        *,
        recv_window_ms: int = 5000,
        timeout_sec: float = 10.0,
        limiter: SimpleRateLimiter | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._market = Market(market)
        self._paths = _PATHS[self._market]
        self._keys = keys
        self._recv_window_ms = int(recv_window_ms)
        self._limiter = limiter or SimpleRateLimiter()
        self._http = httpx.AsyncClient(base_url=base_url, timeout=timeout_sec, transport=transport)
        self._time_offset_ms: int = 0
        self._last_time_sync_ms: int = 0
        self._log = logging.getLogger("botfleet.exchange")

    @property
    def market(self) -> Market:
        return self._market

    async def close(self) -> None:
        await self._http.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        signed: bool = False,
        params: dict[str, Any] | None = None,
    ) -> Any:
        params = dict(params or {})
        headers: dict[str, str] = {}
        if signed:
            if self._keys is None:
                raise CredentialsMissingError(f"signed request to {path} without API keys")
            await self._maybe_sync_time()
            ts = int(time.time() * 1000) + self._time_offset_ms
            qs = signed_query(params, self._keys.api_secret, timestamp_ms=ts, recv_window_ms=self._recv_window_ms)
            headers["X-MBX-APIKEY"] = self._keys.api_key
        else:
            qs = urlencode(encode_params(params))

        await self._limiter.acquire()
        url = f"{path}?{qs}" if qs else path
        r = await self._http.request(method, url, headers=headers)
        if r.status_code < 400:
            return r.json()

        try:
            body = r.json()
        except ValueError:
            body = {"raw": r.text}
        raise ExchangeApiError(r.status_code, body)

    async def _maybe_sync_time(self) -> None:
        now = int(time.time() * 1000)
        if self._last_time_sync_ms == 0 or (now - self._last_time_sync_ms) > _TIME_SYNC_EVERY_MS:
            await self.sync_time()

    async def sync_time(self) -> int:
        data = await self._request("GET", self._paths["time"])
        local_time = int(time.time() * 1000)
        self._time_offset_ms = int(data["serverTime"]) - local_time
        self._last_time_sync_ms = local_time
        return self._time_offset_ms

    async def get_candles(self, symbol: str, interval: str, limit: int = 200) -> list[Candle]:
        rows = await self._request(
            "GET",
            self._paths["klines"],
            params={"symbol": symbol, "interval": interval, "limit": int(limit)},
        )
        out: list[Candle] = []
        for k in rows or []:
            try:
                out.append(
                    Candle(
                        symbol=symbol,
                        interval=interval,
                        open_time=_ms_to_dt(k[0]),
                        close_time=_ms_to_dt(k[6]),
                        open=float(k[1]),
                        high=float(k[2]),
                        low=float(k[3]),
                        close=float(k[4]),
                        volume=float(k[5]),
                    )
                )
            except (IndexError, TypeError, ValueError):
                self._log.warning("Skipping malformed kline for %s: %r", symbol, k)
        return out

    async def get_account(self, quote_asset: str = "USDT") -> AccountSnapshot:
        data = await self._request("GET", self._paths["account"], signed=True)
        if self._market == Market.FUTURES:
            balances = {
                a.get("asset", ""): float(a.get("availableBalance", 0.0) or 0.0) for a in data.get("assets", [])
            }
            return AccountSnapshot(
                quote_asset=quote_asset,
                wallet_balance=float(data.get("totalWalletBalance", 0.0) or 0.0),
                available_balance=float(data.get("availableBalance", 0.0) or 0.0),
                unrealized_pnl=float(data.get("totalUnrealizedProfit", 0.0) or 0.0),
                balances=balances,
            )

        free: dict[str, float] = {}
        quote_total = 0.0
        for b in data.get("balances", []):
            asset = b.get("asset", "")
            f = float(b.get("free", 0.0) or 0.0)
            free[asset] = f
            if asset == quote_asset:
                quote_total = f + float(b.get("locked", 0.0) or 0.0)
        return AccountSnapshot(
            quote_asset=quote_asset,
            wallet_balance=quote_total,
            available_balance=free.get(quote_asset, 0.0),
            balances=free,
        )

    async def get_positions(self, symbol: str) -> list[PositionSnapshot]:
        if self._market != Market.FUTURES:
            return []
        data = await self._request("GET", self._paths["positions"], signed=True, params={"symbol": symbol})
        out: list[PositionSnapshot] = []
        for p in data or []:
            qty = float(p.get("positionAmt", 0.0) or 0.0)
            if abs(qty) < 1e-12:
                continue
            mark = float(p.get("markPrice", 0.0) or 0.0)
            out.append(
                PositionSnapshot(
                    symbol=p.get("symbol", symbol),
                    side=PositionSide.LONG if qty > 0 else PositionSide.SHORT,
                    quantity=abs(qty),
                    entry_price=float(p.get("entryPrice", 0.0) or 0.0) or None,
                    mark_price=mark or None,
                    unrealized_pnl=float(p.get("unRealizedProfit", 0.0) or 0.0),
                )
            )
        return out

    async def set_leverage(self, symbol: str, leverage: int) -> int:
        if self._market != Market.FUTURES:
            raise ValueError("leverage only applies to futures")
        data = await self._request(
            "POST",
            self._paths["leverage"],
            signed=True,
            params={"symbol": symbol, "leverage": int(leverage)},
        )
        return int(data.get("leverage", leverage))

    async def place_order(self, req: OrderRequest) -> OrderResult:
        params: dict[str, Any] = {
            "symbol": req.symbol,
            "side": req.side.value,
            "type": req.order_type,
            "quantity": _fmt_qty(req.quantity),
            "newOrderRespType": "RESULT",
        }
        if req.reduce_only and self._market == Market.FUTURES:
            params["reduceOnly"] = True
        data = await self._request("POST", self._paths["order"], signed=True, params=params)

        executed = float(data.get("executedQty", 0.0) or 0.0)
        avg_price = float(data.get("avgPrice", 0.0) or 0.0)
        if not avg_price and executed > 0:
            # spot reports the quote amount spent instead of an average price
            avg_price = float(data.get("cummulativeQuoteQty", 0.0) or 0.0) / executed
        self._log.info(
            "Order placed %s %s qty=%s status=%s", req.symbol, req.side.value, params["quantity"], data.get("status")
        )
        return OrderResult(
            order_id=str(data.get("orderId") or data.get("clientOrderId") or "unknown"),
            symbol=data.get("symbol", req.symbol),
            side=Side(data.get("side", req.side.value)),
            quantity=executed or float(req.quantity),
            status=str(data.get("status", "NEW")),
            avg_price=avg_price or None,
            raw=data,
        )
