from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from botfleet.core.types import BotStatus, BotStatusSnapshot
from botfleet.engine.scheduler import Scheduler
from botfleet.exchange.auth import ApiKeys, CredentialSet

TESTNET_ONLY = CredentialSet(testnet=ApiKeys(api_key="k", api_secret="s"))


class StubLoop:
    def __init__(self, bot_id: str, *, stubborn: bool = False, crash: bool = False) -> None:
        self.bot_id = bot_id
        self.stubborn = stubborn
        self.crash = crash
        self.stopped = False

    async def run(self, stop: asyncio.Event) -> None:
        if self.crash:
            raise RuntimeError("boom")
        if self.stubborn:
            await asyncio.sleep(3600)
        await stop.wait()
        self.stopped = True


def _scheduler(store, credentials=TESTNET_ONLY, **loop_kwargs):
    made: list[StubLoop] = []

    def factory(bot_id: str) -> StubLoop:
        loop = StubLoop(bot_id, **loop_kwargs)
        made.append(loop)
        return loop

    sched = Scheduler(
        store=store,
        credentials=credentials,
        loop_factory=factory,
        interval_sec=0.01,
        stop_timeout_sec=0.05,
    )
    return sched, made


def test_starts_only_bots_with_credentials(store, make_bot):
    store.save_bot(make_bot(id="test-bot", use_testnet=True))
    store.save_bot(make_bot(id="main-bot", use_testnet=False))
    sched, made = _scheduler(store)

    async def go():
        await sched.reconcile()
        ids = sched.running_ids
        await sched.shutdown()
        return ids

    assert asyncio.run(go()) == {"test-bot"}
    assert [m.bot_id for m in made] == ["test-bot"]


def test_reconcile_is_idempotent(store, make_bot):
    store.save_bot(make_bot(id="a"))
    store.save_bot(make_bot(id="b", enabled=False))
    sched, made = _scheduler(store)

    async def go():
        await sched.reconcile()
        await sched.reconcile()
        await sched.reconcile()
        ids = sched.running_ids
        await sched.shutdown()
        return ids

    assert asyncio.run(go()) == {"a", "b"}
    assert sorted(m.bot_id for m in made) == ["a", "b"]


def test_deleted_bot_is_stopped_and_its_state_removed(store, make_bot):
    store.save_bot(make_bot(id="a"))
    sched, made = _scheduler(store)

    async def go():
        await sched.reconcile()
        store.delete_bot("a")
        # snapshot written by a tick that was still in flight
        store.upsert_snapshot(BotStatusSnapshot(bot_id="a", status=BotStatus.RUNNING, updated_at=datetime.now(timezone.utc)))
        await sched.reconcile()
        return sched.running_ids

    assert asyncio.run(go()) == set()
    assert made[0].stopped is True
    assert store.get_snapshot("a") is None


def test_loop_ignoring_stop_is_cancelled(store, make_bot):
    store.save_bot(make_bot(id="a"))
    sched, made = _scheduler(store, stubborn=True)

    async def go():
        await sched.reconcile()
        handle = sched.handle("a")
        store.delete_bot("a")
        await sched.reconcile()
        return handle

    handle = asyncio.run(go())
    assert handle.task.cancelled() is True
    assert made[0].stopped is False


def test_crashed_loop_is_restarted(store, make_bot):
    store.save_bot(make_bot(id="a"))
    sched, made = _scheduler(store, crash=True)

    async def go():
        await sched.reconcile()
        await asyncio.sleep(0.01)
        await sched.reconcile()
        await sched.shutdown()

    asyncio.run(go())
    assert len(made) == 2


def test_run_until_stopped(store, make_bot):
    store.save_bot(make_bot(id="a"))
    sched, made = _scheduler(store)

    async def go():
        stop = asyncio.Event()
        task = asyncio.create_task(sched.run(stop))
        for _ in range(100):
            if sched.running_ids:
                break
            await asyncio.sleep(0.01)
        running = sched.running_ids
        stop.set()
        await asyncio.wait_for(task, timeout=2.0)
        return running

    assert asyncio.run(go()) == {"a"}
    assert sched.running_ids == set()
    assert made[0].stopped is True


BAD_CONFIG = {"id": "bad", "enabled": True, "strategy": {"fast_period": 21, "slow_period": 21}}


def test_invalid_row_does_not_stall_reconcile(store, make_bot, raw_bot):
    store.save_bot(make_bot(id="good"))
    store.save_bot(make_bot(id="doomed"))
    sched, made = _scheduler(store)

    async def go():
        await sched.reconcile()
        store.delete_bot("doomed")
        raw_bot(store, "bad", BAD_CONFIG)
        store.save_bot(make_bot(id="new"))
        await sched.reconcile()
        ids = sched.running_ids
        await sched.shutdown()
        return ids

    assert asyncio.run(go()) == {"good", "new"}
    doomed = next(m for m in made if m.bot_id == "doomed")
    assert doomed.stopped is True
    assert "bad" not in [m.bot_id for m in made]


def test_running_bot_with_broken_config_keeps_its_loop(store, make_bot, raw_bot):
    store.save_bot(make_bot(id="bad"))
    sched, made = _scheduler(store)

    async def go():
        await sched.reconcile()
        raw_bot(store, "bad", BAD_CONFIG)
        await sched.reconcile()
        ids = sched.running_ids
        await sched.shutdown()
        return ids

    assert asyncio.run(go()) == {"bad"}
    assert len(made) == 1
