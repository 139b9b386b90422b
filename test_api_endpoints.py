import json
import time

import pytest

import explorer_api
from config import TestConfig
from conftest import ALICE, FakeSdk, make_account
from explorer_api import CoreRunner, app
from explorer_core import ExplorerCore
from views import function_path


@pytest.fixture
def sdk(monkeypatch):
    fake = FakeSdk()
    runner = CoreRunner(ExplorerCore(fake, TestConfig), timeout=5)
    monkeypatch.setattr(explorer_api, "runner", runner)
    runner.start(wait=True)
    yield fake
    runner.stop()


@pytest.fixture
def client(sdk):
    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c


def body(resp):
    return json.loads(resp.data.decode())


def test_health_endpoint(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    data = body(resp)
    assert data["status"] == "healthy"
    assert data["explorer"] == "running"
    assert data["node"]["ready"] is True
    assert data["node"]["error"] is None


def test_health_degraded_when_ledger_unreachable(monkeypatch):
    fake = FakeSdk()
    fake.connect_failures = 100
    runner = CoreRunner(ExplorerCore(fake, TestConfig), timeout=5)
    monkeypatch.setattr(explorer_api, "runner", runner)
    runner.start(wait=True)
    try:
        with app.test_client() as c:
            data = body(c.get("/health"))
        assert data["status"] == "degraded"
        assert "Unable to connect to ledger after 4 attempts" in data["node"]["error"]
    finally:
        runner.stop()


def test_explorer_info(client):
    data = body(client.get("/"))
    assert data["name"] == "Libra Explorer"
    assert "chain_stats" in data["domains"]
    assert "community_wallets" in data["domains"]


def test_read_before_fetch(client):
    resp = client.get("/api/chain_stats")
    assert resp.status_code == 200
    data = body(resp)
    assert data["payload"] is None
    assert data["is_loading"] is False
    assert data["is_stale"] is True
    assert data["error"] is None


def test_refresh_then_read(client, sdk):
    data = body(client.post("/api/chain_stats/refresh", json={}))
    assert data["refreshed"] is True
    assert data["payload"]["epoch"] == 100

    again = body(client.post("/api/chain_stats/refresh", json={}))
    assert again["refreshed"] is False
    assert sdk.count("get_ledger_info") == 1

    forced = body(client.post("/api/chain_stats/refresh", json={"force": True}))
    assert forced["refreshed"] is True
    assert sdk.count("get_ledger_info") == 2


def test_unknown_domain(client):
    resp = client.get("/api/blocks")
    assert resp.status_code == 404
    assert "Unknown domain" in body(resp)["error"]


def test_invalid_address(client, sdk):
    resp = client.get("/api/account/not-an-address")
    assert resp.status_code == 400
    assert body(resp)["error"] == "Invalid address format: not-an-address"

    resp = client.post("/api/account/0x12/refresh", json={})
    assert resp.status_code == 400
    assert sdk.count("get_account") == 0


def test_account_refresh(client, sdk):
    sdk.accounts[ALICE] = make_account(ALICE, balance=900)
    resp = client.post("/api/account/0xA11CE/refresh", json={})
    data = body(resp)
    assert data["key"] == ALICE
    assert data["payload"]["balance"] == 900
    assert data["payload"]["overlay"] is None


def test_account_not_found_is_data(client):
    data = body(client.post(f"/api/account/{ALICE}/refresh", json={}))
    assert data["refreshed"] is False
    assert data["payload"] is None
    assert data["error"] == f"Account not found: {ALICE}"


def test_load_more_transactions(client, sdk):
    client.post("/api/transactions/refresh", json={})
    data = body(client.post("/api/transactions/load-more"))
    assert data["refreshed"] is True
    assert data["payload"]["limit"] == 50
    assert ("get_transactions", 50) in sdk.calls


def test_block_time(client):
    assert body(client.get("/api/chain_stats/block-time"))["block_time_ms"] is None
    client.post("/api/transactions/refresh", json={})
    assert body(client.get("/api/chain_stats/block-time"))["block_time_ms"] == 1.0


def test_classified_vouches(client, sdk):
    sdk.view_results[function_path("given_vouches")] = [["0xb0b"], ["95"]]
    sdk.view_results[function_path("received_vouches")] = [[], []]
    client.post("/api/chain_stats/refresh", json={})
    client.post(f"/api/vouching/{ALICE}/refresh", json={})

    data = body(client.get(f"/api/vouching/{ALICE}/classified"))
    assert data["payload"]["given"][0]["status"] == "active"
    assert data["payload"]["active_given"] == 1
    assert data["payload"]["received"] == []


def test_visibility_starts_and_stops_polling(client, sdk):
    resp = client.post(f"/api/account/{ALICE}/visibility", json={"visible": True})
    assert body(resp)["visible"] is True

    deadline = time.time() + 2
    while sdk.count("get_account") == 0 and time.time() < deadline:
        time.sleep(0.01)
    assert sdk.count("get_account") >= 1
    assert body(client.get("/api/stats"))["active"] == {"account": [ALICE]}

    client.post(f"/api/account/{ALICE}/visibility", json={"visible": False})
    assert body(client.get("/api/stats"))["active"] == {}


def test_app_state(client):
    assert body(client.post("/api/app-state", json={"state": "background"}))["state"] == "background"
    assert client.post("/api/app-state", json={"state": "active"}).status_code == 200

    resp = client.post("/api/app-state", json={"state": "asleep"})
    assert resp.status_code == 400
    assert "Unknown app state" in body(resp)["error"]


def test_stats_endpoint(client):
    client.post("/api/supply/refresh", json={})
    data = body(client.get("/api/stats"))
    assert data["session"]["ready"] is True
    assert data["stores"]["supply"]["commits"] == 1
    assert data["app_state"] == "active"
