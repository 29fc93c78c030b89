from __future__ import annotations

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from botfleet.app.status_api import create_app
from botfleet.core.types import BotStatus, BotStatusSnapshot, DecisionRecord, ErrorDetail

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture()
def client(store) -> TestClient:
    return TestClient(create_app(store))


def test_health_with_no_bots(client: TestClient):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True, "bots": 0, "failing": []}


def test_health_lists_failing_bots(client: TestClient, store):
    store.upsert_snapshot(BotStatusSnapshot(bot_id="good", status=BotStatus.RUNNING, updated_at=T0))
    store.upsert_snapshot(
        BotStatusSnapshot(bot_id="bad", status=BotStatus.ERROR, updated_at=T0, error=ErrorDetail(message="boom"))
    )
    data = client.get("/health").json()
    assert data["ok"] is False
    assert data["failing"] == ["bad"]


def test_bots_joins_config_and_status(client: TestClient, store, make_bot):
    store.save_bot(make_bot(id="a", name="alpha"))
    store.save_bot(make_bot(id="b"))
    store.upsert_snapshot(BotStatusSnapshot(bot_id="a", status=BotStatus.BLOCKED, updated_at=T0))

    items = client.get("/bots").json()["items"]
    by_id = {i["id"]: i for i in items}
    assert by_id["a"]["status"] == "BLOCKED"
    assert by_id["a"]["config"]["name"] == "alpha"
    assert by_id["b"]["status"] is None


def test_snapshot_endpoint(client: TestClient, store):
    assert client.get("/bots/a/snapshot").status_code == 404

    store.upsert_snapshot(BotStatusSnapshot(bot_id="a", status=BotStatus.DISABLED, updated_at=T0))
    r = client.get("/bots/a/snapshot")
    assert r.status_code == 200
    assert r.json()["status"] == "DISABLED"
    assert r.json()["ok"] is True


def test_decisions_endpoint_respects_limit(client: TestClient, store):
    for i in range(3):
        store.record_decision(
            "a", DecisionRecord(action="NONE", reason="HOLD", quantity=None, signal="HOLD", price=float(i), time=T0)
        )
    items = client.get("/bots/a/decisions", params={"limit": 2}).json()["items"]
    assert [d["price"] for d in items] == [2.0, 1.0]
    assert client.get("/bots/a/decisions", params={"limit": 0}).status_code == 422


def test_no_write_routes(client: TestClient):
    assert client.post("/bots", json={}).status_code == 405
    assert client.delete("/bots/a/snapshot").status_code == 405


def test_bots_survives_an_invalid_config_row(client: TestClient, store, make_bot, raw_bot):
    store.save_bot(make_bot(id="a"))
    raw_bot(store, "bad", {"id": "bad", "strategy": {"fast_period": 30, "slow_period": 20}})

    r = client.get("/bots")
    assert r.status_code == 200
    assert [i["id"] for i in r.json()["items"]] == ["a"]
