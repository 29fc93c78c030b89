from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from datetime import datetime, timezone
from pathlib import Path

import yaml
from pydantic import ValidationError

from botfleet.app.bootstrap import build_scheduler, open_store
from botfleet.core.bot_config import BotConfig
from botfleet.core.config import AppConfig, load_config
from botfleet.core.env import load_dotenv
from botfleet.core.types import BotStatus, BotStatusSnapshot, ErrorDetail
from botfleet.data.store import BotStore
from botfleet.exchange.auth import CredentialSet, load_credentials_from_env
from botfleet.monitoring.logger import get_logger, setup_logging

# status row used for worker-level failures that are not tied to one bot
WORKER_BOT_ID = "main"

log = get_logger("main")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="botfleet")
    p.add_argument("--config", default=None, help="Path to YAML config (e.g., configs/default.yaml)")
    sub = p.add_subparsers(dest="command", required=True)
    sub.add_parser("run", help="Run the worker until interrupted")
    sub.add_parser("status", help="Print the latest snapshot of every bot as JSON")
    imp = sub.add_parser("import-bots", help="Upsert bot configs from a YAML list")
    imp.add_argument("file")
    return p


def write_fatal(store: BotStore, message: str) -> BotStatusSnapshot:
    snap = BotStatusSnapshot(
        bot_id=WORKER_BOT_ID,
        status=BotStatus.FATAL,
        updated_at=datetime.now(timezone.utc),
        error=ErrorDetail(message=message),
    )
    store.upsert_snapshot(snap)
    return snap


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # not available on this platform; Ctrl-C falls back to KeyboardInterrupt
            pass


async def run_worker(
    cfg: AppConfig,
    store: BotStore,
    credentials: CredentialSet,
    stop: asyncio.Event | None = None,
) -> int:
    if not credentials.has_any():
        msg = "no exchange API credentials configured (mainnet or testnet)"
        log.error(msg)
        write_fatal(store, msg)
        return 1

    stop = stop or asyncio.Event()
    scheduler = build_scheduler(cfg, store, credentials)
    log.info(
        "Worker starting (db=%s, mainnet keys=%s, testnet keys=%s)",
        cfg.worker.db_path,
        credentials.mainnet is not None,
        credentials.testnet is not None,
    )
    await scheduler.run(stop)
    return 0


def import_bots(store: BotStore, path: str) -> int:
    data = yaml.safe_load(Path(path).read_text()) or []
    if isinstance(data, dict):
        data = data.get("bots") or []
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list of bot configs")

    bots = [BotConfig.model_validate(item) for item in data]
    for bot in bots:
        store.save_bot(bot)
        log.info("Imported bot %s (%s %s, enabled=%s)", bot.id, bot.market.value, bot.symbol, bot.enabled)
    return len(bots)


def print_status(store: BotStore) -> None:
    snaps = [s.to_dict() for s in store.list_snapshots()]
    print(json.dumps(snaps, indent=2, sort_keys=True, default=str))


async def _amain(argv: list[str]) -> int:
    args = _build_parser().parse_args(argv)
    load_dotenv(".env")
    cfg = load_config(args.config)
    setup_logging(cfg.logging.level)
    store = open_store(cfg)
    try:
        if args.command == "status":
            print_status(store)
            return 0
        if args.command == "import-bots":
            try:
                n = import_bots(store, args.file)
            except (OSError, ValueError, ValidationError) as e:
                log.error("Import failed: %s", e)
                return 2
            print(f"imported {n} bot(s)")
            return 0

        stop = asyncio.Event()
        _install_signal_handlers(stop)
        return await run_worker(cfg, store, load_credentials_from_env(), stop)
    finally:
        store.close()


def main() -> None:
    try:
        rc = asyncio.run(_amain(sys.argv[1:]))
    except KeyboardInterrupt:
        rc = 130
    raise SystemExit(rc)


if __name__ == "__main__":
    main()
