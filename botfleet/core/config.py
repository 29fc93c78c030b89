from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from botfleet.core.types import Market


class LoggingConfig(BaseModel):
    level: str = "INFO"


class ExchangeConfig(BaseModel):
    spot_base_url: str = "https://api.binance.com"
    spot_testnet_url: str = "https://testnet.binance.vision"
    futures_base_url: str = "https://fapi.binance.com"
    futures_testnet_url: str = "https://testnet.binancefuture.com"
    recv_window_ms: int = 5000
    request_timeout_sec: float = 10.0
    max_requests_per_sec: int = 8

    def base_url(self, market: Market, use_testnet: bool) -> str:
        if market == Market.FUTURES:
            return self.futures_testnet_url if use_testnet else self.futures_base_url
        return self.spot_testnet_url if use_testnet else self.spot_base_url


class WorkerConfig(BaseModel):
    db_path: str = "data/trading-bot.sqlite3"
    reconcile_interval_sec: float = 10.0
    candle_limit: int = Field(default=200, ge=1, le=1000)
    min_poll_ms: int = 500
    # upper bound for one exchange operation, rate-limiter wait included
    operation_timeout_sec: float = 15.0
    stop_timeout_sec: float = 10.0
    max_error_backoff_sec: float = 60.0
    read_retry_attempts: int = Field(default=3, ge=1)
    # drop the still-forming last candle before computing averages
    closed_candles_only: bool = False


class AppConfig(BaseModel):
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    exchange: ExchangeConfig = Field(default_factory=ExchangeConfig)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def load_config(path: str | None, overrides: dict[str, Any] | None = None) -> AppConfig:
    if path is None:
        return AppConfig.model_validate(overrides or {})
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(path)
    data = yaml.safe_load(p.read_text()) or {}
    if overrides:
        data = _deep_merge(data, overrides)
    return AppConfig.model_validate(data)
