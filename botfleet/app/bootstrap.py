from __future__ import annotations

from botfleet.core.config import AppConfig, ExchangeConfig
from botfleet.core.types import Market
from botfleet.data.sqlite_store import SQLiteBotStore
from botfleet.data.store import BotStore
from botfleet.engine.bot_loop import BotLoop, ClientFactory
from botfleet.engine.scheduler import Scheduler
from botfleet.exchange.auth import ApiKeys, CredentialSet
from botfleet.exchange.binance_client import BinanceClient, resolve_base_url
from botfleet.exchange.rate_limiter import LimiterPool
from botfleet.risk.engine import RiskEngine


def make_client_factory(cfg: ExchangeConfig, pool: LimiterPool) -> ClientFactory:
    def _factory(market: Market, use_testnet: bool, keys: ApiKeys | None) -> BinanceClient:
        base_url = resolve_base_url(cfg, market, use_testnet)
        return BinanceClient(
            market,
            base_url,
            keys,
            recv_window_ms=cfg.recv_window_ms,
            timeout_sec=cfg.request_timeout_sec,
            limiter=pool.get(base_url),
        )

    return _factory


def open_store(cfg: AppConfig) -> SQLiteBotStore:
    store = SQLiteBotStore(cfg.worker.db_path)
    store.init_schema()
    return store


def build_scheduler(
    cfg: AppConfig,
    store: BotStore,
    credentials: CredentialSet,
    client_factory: ClientFactory | None = None,
) -> Scheduler:
    factory = client_factory or make_client_factory(cfg.exchange, LimiterPool(cfg.exchange.max_requests_per_sec))
    risk = RiskEngine()

    def _loop(bot_id: str) -> BotLoop:
        return BotLoop(
            bot_id,
            store=store,
            credentials=credentials,
            client_factory=factory,
            worker=cfg.worker,
            risk=risk,
        )

    return Scheduler(
        store=store,
        credentials=credentials,
        loop_factory=_loop,
        interval_sec=cfg.worker.reconcile_interval_sec,
        stop_timeout_sec=cfg.worker.stop_timeout_sec,
    )
