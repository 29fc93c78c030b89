from __future__ import annotations

import os
from typing import Any

from fastapi import FastAPI, HTTPException, Query

from botfleet.core.config import WorkerConfig
from botfleet.data.sqlite_store import SQLiteBotStore
from botfleet.data.store import BotStore


def create_app(store: BotStore) -> FastAPI:
    """Read-only view over the store: configs, latest snapshots, decision history."""
    app = FastAPI(title="botfleet status")

    @app.get("/health")
    def health() -> dict[str, Any]:
        snaps = store.list_snapshots()
        return {
            "ok": all(s.ok for s in snaps),
            "bots": len(snaps),
            "failing": sorted(s.bot_id for s in snaps if not s.ok),
        }

    @app.get("/bots")
    def list_bots() -> dict[str, Any]:
        snaps = {s.bot_id: s for s in store.list_snapshots()}
        items = []
        for bot in store.list_bots():
            snap = snaps.get(bot.id)
            items.append(
                {
                    "id": bot.id,
                    "name": bot.name,
                    "config": bot.model_dump(mode="json"),
                    "status": snap.status.value if snap else None,
                    "updated_at": snap.updated_at.isoformat() if snap else None,
                }
            )
        return {"items": items}

    @app.get("/bots/{bot_id}/snapshot")
    def get_snapshot(bot_id: str) -> dict[str, Any]:
        snap = store.get_snapshot(bot_id)
        if snap is None:
            raise HTTPException(status_code=404, detail="snapshot not found")
        return snap.to_dict()

    @app.get("/bots/{bot_id}/decisions")
    def list_decisions(bot_id: str, limit: int = Query(default=50, ge=1, le=1000)) -> dict[str, Any]:
        return {"items": [d.to_dict() for d in store.list_decisions(bot_id, limit=limit)]}

    return app


def app_from_env() -> FastAPI:
    """uvicorn factory: `uvicorn --factory botfleet.app.status_api:app_from_env`."""
    db_path = (os.getenv("BOTFLEET_DB") or WorkerConfig().db_path).strip()
    store = SQLiteBotStore(db_path)
    store.init_schema()
    return create_app(store)
