"""Tests for REST endpoints."""
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from conftest import make_alert
from marketpulse.domain.errors import PersistenceError
from marketpulse.main import create_app

USER = {"X-User-Id": "user1"}


@pytest.fixture
def client(services):
    app = create_app(services=services, enable_scheduler=False)
    with TestClient(app) as test_client:
        yield test_client


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["websocketClients"] == 0
    assert body["schedulerRunning"] is False


def test_get_stock(client, provider):
    provider.set_quote("TCS", 3500, 3450)

    response = client.get("/api/v1/market/stock/tcs")

    assert response.status_code == 200
    body = response.json()
    assert body["symbol"] == "TCS"
    assert body["changePercent"] == 1.45
    assert body["previousClose"] == 3450


def test_get_stock_not_available(client):
    response = client.get("/api/v1/market/stock/UNKNOWN")
    assert response.status_code == 404


def test_batch_partial_success(client, provider):
    provider.set_quote("A", 10, 9)
    provider.set_quote("C", 30, 29)

    response = client.post("/api/v1/market/stocks/batch", json={"symbols": ["A", "B", "C"]})

    assert response.status_code == 200
    results = response.json()["results"]
    assert results["A"]["status"] == "success"
    assert results["B"]["status"] == "error"
    assert "data" not in results["B"]
    assert results["C"]["data"]["price"] == 30


def test_batch_limit(client):
    symbols = [f"S{i}" for i in range(51)]
    response = client.post("/api/v1/market/stocks/batch", json={"symbols": symbols})
    assert response.status_code == 422


def test_indices(client, provider):
    provider.set_quote("NIFTY", 20050, 19800)

    results = client.get("/api/v1/market/indices").json()["results"]

    assert set(results) == {"NIFTY", "SENSEX", "BANKNIFTY"}
    assert results["NIFTY"]["status"] == "success"


def test_cache_stats_and_clear(client, provider):
    provider.set_quote("TCS", 3500, 3450)
    client.get("/api/v1/market/stock/TCS")

    assert client.get("/api/v1/market/cache/stats").json() == {"size": 1, "keys": ["TCS"]}
    assert client.delete("/api/v1/market/cache").status_code == 200
    assert client.get("/api/v1/market/cache/stats").json()["size"] == 0


def test_alerts_require_user(client):
    assert client.get("/api/v1/alerts").status_code == 401


def test_create_and_list_alerts(client):
    response = client.post(
        "/api/v1/alerts",
        json={"symbol": "nifty", "condition": "above", "targetValue": 20000},
        headers=USER,
    )
    assert response.status_code == 201
    created = response.json()
    assert created["symbol"] == "NIFTY"
    assert created["priority"] == "high"
    assert created["status"] == "active"
    assert created["isTriggered"] is False

    listing = client.get("/api/v1/alerts", headers=USER).json()
    assert [a["id"] for a in listing["alerts"]] == [created["id"]]
    assert listing["pagination"] == {"current": 1, "total": 1, "count": 1, "totalItems": 1}


def test_create_duplicate_alert_is_400(client):
    payload = {"symbol": "TCS", "condition": "below", "targetValue": 3000}
    assert client.post("/api/v1/alerts", json=payload, headers=USER).status_code == 201
    assert client.post("/api/v1/alerts", json=payload, headers=USER).status_code == 400


def test_create_alert_with_past_expiry_is_400(client, clock):
    payload = {
        "symbol": "TCS",
        "condition": "below",
        "targetValue": 3000,
        "expiresAt": (clock() - timedelta(days=1)).isoformat(),
    }
    assert client.post("/api/v1/alerts", json=payload, headers=USER).status_code == 400


def test_update_and_delete_alert(client, alert_repository):
    alert_repository.create(make_alert())

    response = client.put("/api/v1/alerts/a1", json={"message": "watch"}, headers=USER)
    assert response.status_code == 200
    assert response.json()["message"] == "watch"

    assert client.delete("/api/v1/alerts/a1", headers=USER).status_code == 200
    assert alert_repository.get("a1").is_active is False


def test_other_users_alert_is_404(client, alert_repository):
    alert_repository.create(make_alert(user_id="user2"))
    assert client.put("/api/v1/alerts/a1", json={"message": "x"}, headers=USER).status_code == 404
    assert client.delete("/api/v1/alerts/a1", headers=USER).status_code == 404


def test_alert_stats(client, alert_repository):
    alert_repository.create(make_alert())
    assert client.get("/api/v1/alerts/stats", headers=USER).json() == {
        "total": 1,
        "active": 1,
        "triggered": 0,
        "pending": 1,
    }


def test_manual_check_runs_cycle(client, alert_repository, provider):
    alert_repository.create(make_alert(symbol="TCS", target_value=100))
    provider.set_quote("TCS", 150, 140)

    response = client.post("/api/v1/alerts/check", headers=USER)

    assert response.json() == {"checked": 1, "triggered": 1, "skipped": False}
    assert alert_repository.get("a1").is_triggered


def test_persistence_error_is_503(client, alert_repository):
    def broken(*args, **kwargs):
        raise PersistenceError("clickhouse down")

    alert_repository.stats = broken
    assert client.get("/api/v1/alerts/stats", headers=USER).status_code == 503


def test_realtime_stats(client):
    body = client.get("/api/v1/realtime/stats").json()
    assert body["total_connections"] == 0
