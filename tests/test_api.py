"""HTTP tests against the FastAPI app with stubbed upstream sources."""

import pytest
from fastapi.testclient import TestClient

from banknifty_tracker.core.config import Settings
from banknifty_tracker.main import create_app
from banknifty_tracker.services.constituents import ConstituentTracker
from banknifty_tracker.services.history_logger import HistoryLogger
from banknifty_tracker.services.multiplier_store import MultiplierStore
from banknifty_tracker.services.quote_fetcher import QuoteFetcher
from banknifty_tracker.services.tracker_service import TrackerService

from conftest import StubPrimary, StubSecondary, make_quote, read_json


def build_service(file_backend, cache, primary, secondary, pin_override=None):
    settings = Settings()
    store = MultiplierStore(file_backend, pin_override=pin_override)
    fetcher = QuoteFetcher(primary, secondary, cache, issued_shares={})
    tracker = ConstituentTracker(primary, store)
    history = HistoryLogger(fetcher, store, tracker)
    return TrackerService(settings, None, primary, secondary, cache, store, fetcher, tracker, history)


@pytest.fixture
def primary():
    return StubPrimary(bulk={"HDFCBANK": make_quote("HDFCBANK", 1650.0), "SBIN": make_quote("SBIN", 810.0)})


@pytest.fixture
def secondary():
    return StubSecondary(prices={"SBIN": 812.0}, index_value=51000.0)


@pytest.fixture
def service(file_backend, cache, primary, secondary):
    return build_service(file_backend, cache, primary, secondary)


@pytest.fixture
def client(service):
    app = create_app(service.settings, service, start_background_tasks=False)
    with TestClient(app) as test_client:
        yield test_client


def test_health(client):
    response = client.get("/health")
    body = response.json()
    assert response.status_code == 200
    assert body["status"] == "ok"
    assert body["redis"] == "not configured"
    assert body["background_tasks_running"] is False


def test_index(client):
    response = client.get("/api/banknifty")
    assert response.status_code == 200
    assert response.json()["data"]["live_price"] == 51000.0


def test_index_unavailable(file_backend, cache, primary):
    service = build_service(file_backend, cache, primary, StubSecondary())
    app = create_app(service.settings, service, start_background_tasks=False)
    with TestClient(app) as client:
        response = client.get("/api/banknifty")
    assert response.status_code == 502
    assert response.json()["success"] is False


def test_stocks_lists_every_constituent(client):
    response = client.get("/api/stocks")
    rows = response.json()["data"]

    assert response.status_code == 200
    assert len(rows) == 12
    by_symbol = {row["symbol"]: row for row in rows}
    assert by_symbol["HDFCBANK"]["live_price"] == 1650.0
    assert by_symbol["HDFCBANK"]["multiplier"] == 1.0
    assert by_symbol["PNB"]["live_price"] is None
    assert by_symbol["PNB"]["error"]


def test_single_stock(client):
    response = client.get("/api/stocks/sbin")
    data = response.json()["data"]
    assert response.status_code == 200
    assert data["symbol"] == "SBIN"
    assert data["name"] == "State Bank of India"
    assert data["live_price"] == 812.0


def test_unknown_stock_is_404(client):
    response = client.get("/api/stocks/NOTABANK")
    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Stock not found"}


def test_verify_pin(client):
    assert client.post("/api/verify-pin", json={"pin": "1234"}).status_code == 200
    assert client.post("/api/verify-pin", json={"pin": "0000"}).status_code == 401
    assert client.post("/api/verify-pin", json={}).status_code == 400


def test_pin_override(file_backend, cache, primary, secondary):
    service = build_service(file_backend, cache, primary, secondary, pin_override="9999")
    app = create_app(service.settings, service, start_background_tasks=False)
    with TestClient(app) as client:
        assert client.post("/api/verify-pin", json={"pin": "9999"}).status_code == 200
        assert client.post("/api/verify-pin", json={"pin": "1234"}).status_code == 401


def test_update_multiplier_is_saved(service, file_backend):
    app = create_app(service.settings, service, start_background_tasks=False)
    with TestClient(app) as client:
        response = client.put("/api/multipliers/sbin", json={"pin": "1234", "multiplier": 2.5})
        assert response.status_code == 200
        assert response.json()["data"] == {"symbol": "SBIN", "multiplier": 2.5}
        assert client.get("/api/multipliers").json()["data"]["SBIN"] == 2.5

    # shutdown drains the save queue
    assert read_json(file_backend.multipliers_path)["SBIN"] == 2.5
    assert service.store.last_save_backend == "file"


def test_update_multiplier_rejections(client, service):
    assert client.put("/api/multipliers/SBIN", json={"multiplier": 2}).status_code == 400
    assert client.put("/api/multipliers/SBIN", json={"pin": "0000", "multiplier": 2}).status_code == 401

    response = client.put("/api/multipliers/SBIN", json={"pin": "1234", "multiplier": -1})
    assert response.status_code == 400
    assert service.store.get_multiplier("SBIN") == 1.0


def test_bulk_update(client):
    response = client.post("/api/multipliers", json={
        "pin": "1234",
        "multipliers": {"SBIN": 2, "PNB": "bad", "AXISBANK": "0.5"}
    })
    body = response.json()
    assert response.status_code == 200
    assert body["applied"] == {"SBIN": 2.0, "AXISBANK": 0.5}
    assert body["skipped"] == ["PNB"]
    assert body["data"]["PNB"] == 1.0


def test_bulk_update_requires_pin(client):
    response = client.post("/api/multipliers", json={"multipliers": {"SBIN": 2}})
    assert response.status_code == 400


def test_constituents(client):
    body = client.get("/api/constituents").json()
    assert body["count"] == 12
    assert body["data"][0] == {"symbol": "HDFCBANK", "name": "HDFC Bank"}


def test_constituent_refresh_unavailable(client):
    body = client.post("/api/constituents/refresh").json()
    assert body["diff"]["fetched"] is False
    assert body["count"] == 12


def test_history_empty(client):
    body = client.get("/api/history").json()
    assert body["data"] == []
    assert body["stats"]["count"] == 0


def test_stock_list_failure_uses_error_envelope(client, service, monkeypatch):
    async def broken():
        raise RuntimeError("store offline")

    monkeypatch.setattr(service, "get_stocks", broken)
    response = client.get("/api/stocks")

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Failed to retrieve stocks: store offline"}
