from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

import httpx

from botfleet.core.bot_config import BotConfig
from botfleet.core.config import WorkerConfig
from botfleet.core.types import (
    AccountSnapshot,
    BotStatus,
    BotStatusSnapshot,
    Candle,
    Close,
    DecisionRecord,
    ErrorDetail,
    Market,
    MarketSample,
    PositionSide,
    PositionSnapshot,
    next_status,
)
from botfleet.data.store import BotStore
from botfleet.engine.state import BotRuntimeState
from botfleet.exchange.auth import ApiKeys, CredentialSet
from botfleet.exchange.base import CredentialsMissingError, ExchangeApiError, ExchangeClient
from botfleet.exchange.retry_policy import error_backoff_sec, read_retry
from botfleet.execution.gateway import OrderGateway
from botfleet.execution.ledger import ledger_equity, ledger_position
from botfleet.monitoring.logger import bot_logger
from botfleet.risk.engine import RiskEngine
from botfleet.strategies.ma_cross import compute_signal

ClientFactory = Callable[[Market, bool, Optional[ApiKeys]], ExchangeClient]

_DEFAULT_POLL_MS = 5000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def wait_for_stop(stop: asyncio.Event, delay_sec: float) -> bool:
    """Sleep up to `delay_sec`; True as soon as the stop signal is set."""
    if stop.is_set():
        return True
    try:
        await asyncio.wait_for(stop.wait(), timeout=max(0.0, delay_sec))
    except asyncio.TimeoutError:
        return False
    return True


@dataclass
class _TickDraft:
    cfg: BotConfig
    now: datetime
    status: BotStatus = BotStatus.RUNNING
    sample: MarketSample | None = None
    account: AccountSnapshot | None = None
    position: PositionSnapshot | None = None
    record: DecisionRecord | None = None
    detail: str | None = None
    failure: BaseException | None = None

    def snapshot(self, bot_id: str, last_decision: DecisionRecord | None) -> BotStatusSnapshot:
        error = None
        status = next_status(
            enabled=True, blocked=self.status == BotStatus.BLOCKED, failed=self.failure is not None
        )
        if self.failure is not None:
            error = ErrorDetail(
                message=str(self.failure) or type(self.failure).__name__,
                response=self.failure.body if isinstance(self.failure, ExchangeApiError) else None,
            )
        elif status == BotStatus.BLOCKED and self.detail:
            error = ErrorDetail(message=self.detail)
        return BotStatusSnapshot(
            bot_id=bot_id,
            status=status,
            updated_at=self.now,
            config=self.cfg.model_dump(mode="json"),
            market=self.sample,
            account=self.account,
            position=self.position,
            last_decision=self.record or last_decision,
            error=error,
        )


class BotLoop:
    """
    Polling loop of one bot.

    Each tick re-reads the bot's config from the store, samples candles, computes the signal,
    runs the risk engine, executes the decision and upserts a status snapshot. A failed tick is
    recorded as ERROR and the next tick starts from scratch.
    """

    def __init__(
        self,
        bot_id: str,
        *,
        store: BotStore,
        credentials: CredentialSet,
        client_factory: ClientFactory,
        worker: WorkerConfig,
        risk: RiskEngine | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.bot_id = bot_id
        self.state = BotRuntimeState()
        self._store = store
        self._credentials = credentials
        self._client_factory = client_factory
        self._worker = worker
        self._risk = risk or RiskEngine()
        self._clock = clock
        self._client: ExchangeClient | None = None
        self._client_key: tuple[Any, ...] | None = None
        self._last_poll_ms = _DEFAULT_POLL_MS
        self._last_decision: DecisionRecord | None = None
        self._log = bot_logger(bot_id)

    async def run(self, stop: asyncio.Event) -> None:
        self._log.info("Loop started")
        try:
            while not stop.is_set():
                started = time.monotonic()
                await self.tick()
                if await wait_for_stop(stop, self.next_delay_sec(time.monotonic() - started)):
                    break
        finally:
            await self._close_client()
            self._log.info("Loop stopped")

    def next_delay_sec(self, elapsed_sec: float) -> float:
        poll_sec = max(self._worker.min_poll_ms, self._last_poll_ms) / 1000.0
        if self.state.consecutive_failures > 1:
            poll_sec = max(
                poll_sec,
                error_backoff_sec(self.state.consecutive_failures, poll_sec, self._worker.max_error_backoff_sec),
            )
        # paced from the start of the tick, not added on top of it
        return max(0.0, poll_sec - elapsed_sec)

    async def tick(self) -> BotStatusSnapshot | None:
        now = self._clock()
        try:
            cfg = self._store.get_bot(self.bot_id)
        except Exception as e:
            self.state.consecutive_failures += 1
            self._log.warning("Config refresh failed: %s", e)
            snap = BotStatusSnapshot(
                bot_id=self.bot_id,
                status=BotStatus.ERROR,
                updated_at=now,
                last_decision=self._last_decision,
                error=ErrorDetail(message=f"config refresh failed: {e}"),
            )
            self._persist(snap)
            return snap

        if cfg is None:
            # deleted; writing a snapshot now would resurrect its row
            self._log.warning("Bot no longer in store, idling until stopped")
            return None

        self._last_poll_ms = cfg.poll_ms
        if not cfg.enabled:
            self.state.consecutive_failures = 0
            snap = BotStatusSnapshot(
                bot_id=self.bot_id,
                status=next_status(enabled=False),
                updated_at=now,
                config=cfg.model_dump(mode="json"),
                last_decision=self._last_decision,
            )
            self._persist(snap)
            return snap

        self.state.begin_tick()
        draft = _TickDraft(cfg=cfg, now=now)
        try:
            await self._run_pipeline(draft)
            self.state.consecutive_failures = 0
        except Exception as e:
            self.state.consecutive_failures += 1
            draft.failure = e
            if isinstance(e, (ExchangeApiError, CredentialsMissingError, httpx.HTTPError, asyncio.TimeoutError)):
                self._log.warning("Tick %s failed: %s", self.state.tick_count, e)
            else:
                self._log.exception("Tick %s failed", self.state.tick_count)

        snap = draft.snapshot(self.bot_id, self._last_decision)
        self._persist(snap)
        return snap

    async def _run_pipeline(self, d: _TickDraft) -> None:
        cfg = d.cfg
        keys = self._credentials.resolve(cfg.use_testnet)
        if keys is None and not cfg.dry_run:
            raise CredentialsMissingError(f"missing {cfg.environment} API keys")
        client = await self._client_for(cfg, keys)

        candles = await self._read(client.get_candles, cfg.symbol, cfg.interval, self._worker.candle_limit)
        closes = self._closes(candles, d.now)
        sample = compute_signal(closes, cfg.strategy.fast_period, cfg.strategy.slow_period)
        d.sample = sample
        if sample.price is None:
            raise RuntimeError(f"no candles for {cfg.symbol} {cfg.interval}")

        if not cfg.dry_run and cfg.market == Market.FUTURES and self.state.applied_leverage != cfg.risk.leverage:
            applied = await self._write(client.set_leverage(cfg.symbol, cfg.risk.leverage))
            self.state.applied_leverage = cfg.risk.leverage
            self._log.info("Leverage set: %s -> %sx", cfg.symbol, applied)

        d.account, d.position = await self._account_and_position(cfg, client, sample.price)

        outcome = self._risk.evaluate(
            cfg,
            self.state,
            sample,
            balance=d.account.equity if d.account.equity is not None else d.account.wallet_balance,
            position=d.position,
            now=d.now,
        )
        d.status = outcome.status
        d.detail = outcome.detail

        gateway = OrderGateway(client, timeout_sec=self._worker.operation_timeout_sec)
        result = await gateway.execute(cfg, outcome.decision, price=sample.price, position=d.position)

        d.record = DecisionRecord.from_decision(
            outcome.decision, sample=sample, time=d.now, dry_run=cfg.dry_run, quantity=outcome.quantity
        )
        self._last_decision = d.record
        if result.executed:
            self.state.mark_order()
            self._log.info(
                "%s %s qty=%s price=%s reason=%s%s",
                d.record.action,
                cfg.symbol,
                result.quantity,
                result.price,
                d.record.reason,
                " (dry-run)" if cfg.dry_run else "",
            )
        if isinstance(outcome.decision, Close) and result.realized_pnl is not None and result.realized_pnl < 0:
            self.state.breaker.record_loss(-result.realized_pnl)

        # From here on a live order may already be on the exchange; a failure below only
        # leaves local bookkeeping behind until the next tick's fresh fetch.
        if result.ledger is not None:
            self._store.update_virtual_balance(cfg.id, result.ledger)
            post = cfg.with_virtual_balance(result.ledger)
            d.account, d.position = self._ledger_view(post, sample.price)
        self._store.record_decision(cfg.id, d.record)

    async def _account_and_position(
        self, cfg: BotConfig, client: ExchangeClient, price: float
    ) -> tuple[AccountSnapshot, PositionSnapshot]:
        if cfg.dry_run:
            return self._ledger_view(cfg, price)

        account = await self._read(client.get_account, cfg.quote_asset)
        if cfg.market == Market.FUTURES:
            positions = await self._read(client.get_positions, cfg.symbol)
            position = next((p for p in positions if p.is_open), PositionSnapshot(symbol=cfg.symbol))
            return replace(account, equity=account.wallet_balance), position

        # spot holdings count as a long of unknown entry, so stop-loss/take-profit cannot apply
        held = float(account.balances.get(cfg.base_asset, 0.0))
        is_open = held >= cfg.risk.quantity_step
        position = PositionSnapshot(
            symbol=cfg.symbol,
            side=PositionSide.LONG if is_open else None,
            quantity=held if is_open else 0.0,
            mark_price=price,
        )
        return replace(account, equity=account.wallet_balance + held * price), position

    def _ledger_view(self, cfg: BotConfig, price: float) -> tuple[AccountSnapshot, PositionSnapshot]:
        vb = cfg.virtual_balance
        position = ledger_position(vb, cfg.symbol, price)
        equity = ledger_equity(vb, price)
        account = AccountSnapshot(
            quote_asset=cfg.quote_asset,
            wallet_balance=vb.current_quote_balance,
            available_balance=vb.current_quote_balance,
            unrealized_pnl=position.unrealized_pnl,
            balances={cfg.quote_asset: vb.current_quote_balance, cfg.base_asset: vb.current_base_balance},
            virtual=True,
            initial_balance=vb.initial_quote_balance,
            equity=equity,
        )
        return account, position

    def _closes(self, candles: list[Candle], now: datetime) -> list[float]:
        if self._worker.closed_candles_only:
            candles = [c for c in candles if c.close_time <= now]
        return [c.close for c in candles]

    async def _read(self, fn: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        timeout = self._worker.operation_timeout_sec

        async def _once() -> Any:
            return await asyncio.wait_for(fn(*args), timeout=timeout)

        return await read_retry(self._worker.read_retry_attempts)(_once)()

    async def _write(self, call: Awaitable[Any]) -> Any:
        return await asyncio.wait_for(call, timeout=self._worker.operation_timeout_sec)

    async def _client_for(self, cfg: BotConfig, keys: ApiKeys | None) -> ExchangeClient:
        key = (cfg.market, cfg.use_testnet, keys)
        if self._client is None or self._client_key != key:
            await self._close_client()
            self._client = self._client_factory(cfg.market, cfg.use_testnet, keys)
            self._client_key = key
            # a new account/environment has its own leverage setting
            self.state.applied_leverage = None
        return self._client

    async def _close_client(self) -> None:
        if self._client is not None:
            client, self._client = self._client, None
            self._client_key = None
            try:
                await client.close()
            except Exception as e:
                self._log.warning("Closing exchange client failed: %s", e)

    def _persist(self, snap: BotStatusSnapshot) -> None:
        try:
            self._store.upsert_snapshot(snap)
        except Exception:
            self._log.exception("Snapshot write failed")
