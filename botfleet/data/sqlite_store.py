from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from botfleet.core.bot_config import BotConfig, VirtualBalance
from botfleet.core.types import BotStatusSnapshot, DecisionRecord
from botfleet.data.store import BotStore
from botfleet.monitoring.logger import get_logger

log = get_logger("store")


class SQLiteBotStore(BotStore):
    def __init__(self, path: str) -> None:
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._path = path
        # bot loops, the scheduler and the status API may touch the store from different threads
        self._conn = sqlite3.connect(self._path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def init_schema(self) -> None:
        with self._lock:
            cur = self._conn.cursor()
            if self._path != ":memory:":
                # the admin side writes configs from another process
                cur.execute("PRAGMA journal_mode=WAL")
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS bots (
                  id TEXT PRIMARY KEY,
                  name TEXT NOT NULL,
                  enabled INTEGER NOT NULL,
                  config_json TEXT NOT NULL,
                  created_at TEXT NOT NULL,
                  updated_at TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS bot_states (
                  bot_id TEXT PRIMARY KEY,
                  updated_at TEXT NOT NULL,
                  ok INTEGER NOT NULL,
                  status TEXT NOT NULL,
                  error_message TEXT,
                  snapshot_json TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS decisions (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  bot_id TEXT NOT NULL,
                  time TEXT NOT NULL,
                  action TEXT NOT NULL,
                  reason TEXT NOT NULL,
                  record_json TEXT NOT NULL
                )
                """
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_bots_enabled ON bots(enabled)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_decisions_bot ON decisions(bot_id, id)")
            self._conn.commit()

    def list_bots(self) -> list[BotConfig]:
        with self._lock:
            rows = self._conn.execute("SELECT id, config_json FROM bots ORDER BY created_at, id").fetchall()
        out: list[BotConfig] = []
        for r in rows:
            try:
                out.append(BotConfig.model_validate(_json_load(r["config_json"])))
            except (ValidationError, ValueError) as e:
                # one bad row must not hide the others; its loop reports the error itself
                log.warning("Skipping invalid config for bot %s: %s", r["id"], e)
        return out

    def list_bot_ids(self) -> list[str]:
        with self._lock:
            rows = self._conn.execute("SELECT id FROM bots ORDER BY created_at, id").fetchall()
        return [r["id"] for r in rows]

    def get_bot(self, bot_id: str) -> BotConfig | None:
        with self._lock:
            row = self._conn.execute("SELECT config_json FROM bots WHERE id=?", (bot_id,)).fetchone()
        if row is None:
            return None
        return BotConfig.model_validate(_json_load(row["config_json"]))

    def save_bot(self, bot: BotConfig) -> None:
        now = _now()
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO bots(id, name, enabled, config_json, created_at, updated_at)
                VALUES(?,?,?,?,?,?)
                ON CONFLICT(id) DO UPDATE SET
                  name=excluded.name,
                  enabled=excluded.enabled,
                  config_json=excluded.config_json,
                  updated_at=excluded.updated_at
                """,
                (bot.id, bot.name, 1 if bot.enabled else 0, _json(bot.model_dump(mode="json")), now, now),
            )
            self._conn.commit()

    def delete_bot(self, bot_id: str) -> bool:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute("DELETE FROM bots WHERE id=?", (bot_id,))
            deleted = cur.rowcount > 0
            cur.execute("DELETE FROM bot_states WHERE bot_id=?", (bot_id,))
            cur.execute("DELETE FROM decisions WHERE bot_id=?", (bot_id,))
            self._conn.commit()
        return deleted

    def update_virtual_balance(self, bot_id: str, vb: VirtualBalance) -> None:
        # read-modify-write under one lock so only the ledger fields change
        with self._lock:
            row = self._conn.execute("SELECT config_json FROM bots WHERE id=?", (bot_id,)).fetchone()
            if row is None:
                raise KeyError(bot_id)
            data = _json_load(row["config_json"])
            data["virtual_balance"] = vb.model_dump(mode="json")
            self._conn.execute(
                "UPDATE bots SET config_json=?, updated_at=? WHERE id=?",
                (_json(data), _now(), bot_id),
            )
            self._conn.commit()

    def upsert_snapshot(self, snapshot: BotStatusSnapshot) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO bot_states(bot_id, updated_at, ok, status, error_message, snapshot_json)
                VALUES(?,?,?,?,?,?)
                ON CONFLICT(bot_id) DO UPDATE SET
                  updated_at=excluded.updated_at,
                  ok=excluded.ok,
                  status=excluded.status,
                  error_message=excluded.error_message,
                  snapshot_json=excluded.snapshot_json
                """,
                (
                    snapshot.bot_id,
                    snapshot.updated_at.isoformat(),
                    1 if snapshot.ok else 0,
                    snapshot.status.value,
                    snapshot.error.message if snapshot.error else None,
                    _json(snapshot.to_dict()),
                ),
            )
            self._conn.commit()

    def get_snapshot(self, bot_id: str) -> BotStatusSnapshot | None:
        with self._lock:
            row = self._conn.execute("SELECT snapshot_json FROM bot_states WHERE bot_id=?", (bot_id,)).fetchone()
        if row is None:
            return None
        return BotStatusSnapshot.from_dict(_json_load(row["snapshot_json"]))

    def list_snapshots(self) -> list[BotStatusSnapshot]:
        with self._lock:
            rows = self._conn.execute("SELECT snapshot_json FROM bot_states ORDER BY bot_id").fetchall()
        return [BotStatusSnapshot.from_dict(_json_load(r["snapshot_json"])) for r in rows]

    def record_decision(self, bot_id: str, rec: DecisionRecord) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT INTO decisions(bot_id, time, action, reason, record_json) VALUES(?,?,?,?,?)",
                (bot_id, rec.time.isoformat(), rec.action, rec.reason, _json(rec.to_dict())),
            )
            self._conn.commit()

    def list_decisions(self, bot_id: str, limit: int = 100) -> list[DecisionRecord]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT record_json FROM decisions WHERE bot_id=? ORDER BY id DESC LIMIT ?",
                (bot_id, int(limit)),
            ).fetchall()
        return [DecisionRecord.from_dict(_json_load(r["record_json"])) for r in rows]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _json(obj: Any) -> str:
    # default=str covers enums/datetimes that slipped past model_dump
    return json.dumps(obj, sort_keys=True, default=str)


def _json_load(s: str) -> Any:
    return json.loads(s)
