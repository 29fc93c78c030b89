from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from typing import Callable

from botfleet.data.store import BotStore
from botfleet.engine.bot_loop import BotLoop, wait_for_stop
from botfleet.exchange.auth import CredentialSet
from botfleet.monitoring.logger import get_logger

LoopFactory = Callable[[str], BotLoop]


@dataclass
class LoopHandle:
    bot_id: str
    loop: BotLoop
    stop: asyncio.Event
    task: asyncio.Task[None]


class Scheduler:
    """
    Keeps exactly one BotLoop per stored bot whose environment has credentials.

    Reconciliation is idempotent. Loops of deleted bots get their stop event set and are
    awaited; only a loop that ignores the signal past `stop_timeout_sec` is cancelled.
    """

    def __init__(
        self,
        *,
        store: BotStore,
        credentials: CredentialSet,
        loop_factory: LoopFactory,
        interval_sec: float = 10.0,
        stop_timeout_sec: float = 10.0,
    ) -> None:
        self._store = store
        self._credentials = credentials
        self._loop_factory = loop_factory
        self._interval_sec = interval_sec
        self._stop_timeout_sec = stop_timeout_sec
        self._loops: dict[str, LoopHandle] = {}
        self._log = get_logger("scheduler")

    @property
    def running_ids(self) -> set[str]:
        return {bot_id for bot_id, h in self._loops.items() if not h.task.done()}

    def handle(self, bot_id: str) -> LoopHandle | None:
        return self._loops.get(bot_id)

    async def run(self, stop: asyncio.Event) -> None:
        self._log.info("Scheduler started (reconcile every %ss)", self._interval_sec)
        try:
            while not stop.is_set():
                try:
                    await self.reconcile()
                except Exception:
                    # store unavailable: keep current loops, try again next cycle
                    self._log.exception("Reconcile failed")
                if await wait_for_stop(stop, self._interval_sec):
                    break
        finally:
            await self.shutdown()
            self._log.info("Scheduler stopped")

    async def reconcile(self) -> None:
        self._reap_finished()
        # ids of rows with an invalid config count as present so their loops keep running
        current = set(self._store.list_bot_ids())
        bots = self._store.list_bots()

        for bot in bots:
            if bot.id in self._loops:
                continue
            if self._credentials.resolve(bot.use_testnet) is None:
                self._log.error("Bot %s: missing %s API keys, retrying next cycle", bot.id, bot.environment)
                continue
            self._start(bot.id)

        for bot_id in [i for i in self._loops if i not in current]:
            await self.stop_loop(bot_id)
            # a tick that was in flight during deletion may have re-written the snapshot
            self._store.delete_bot(bot_id)

    def _start(self, bot_id: str) -> None:
        loop = self._loop_factory(bot_id)
        stop = asyncio.Event()
        task = asyncio.create_task(loop.run(stop), name=f"bot-{bot_id}")
        self._loops[bot_id] = LoopHandle(bot_id=bot_id, loop=loop, stop=stop, task=task)
        self._log.info("Bot %s: loop started", bot_id)

    async def stop_loop(self, bot_id: str) -> None:
        h = self._loops.pop(bot_id, None)
        if h is None:
            return
        h.stop.set()
        try:
            await asyncio.wait_for(asyncio.shield(h.task), timeout=self._stop_timeout_sec)
        except asyncio.TimeoutError:
            self._log.warning("Bot %s: loop ignored stop signal, cancelling", bot_id)
            h.task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await h.task
        except Exception:
            self._log.exception("Bot %s: loop ended with error", bot_id)
        self._log.info("Bot %s: loop stopped", bot_id)

    def _reap_finished(self) -> None:
        for bot_id, h in list(self._loops.items()):
            if not h.task.done():
                continue
            self._loops.pop(bot_id)
            if h.task.cancelled():
                self._log.warning("Bot %s: loop was cancelled, restarting next cycle", bot_id)
                continue
            exc = h.task.exception()
            if exc is not None:
                self._log.error("Bot %s: loop crashed: %r", bot_id, exc)

    async def shutdown(self) -> None:
        for bot_id in list(self._loops):
            await self.stop_loop(bot_id)
