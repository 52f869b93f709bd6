"""Tests for the /ws/realtime protocol."""
from types import SimpleNamespace
import asyncio

import pytest
from fastapi.testclient import TestClient

from conftest import FakeWebSocket
from marketpulse.api.websocket.realtime import websocket_endpoint
from marketpulse.domain.entities import RoomKind
from marketpulse.main import create_app


@pytest.fixture
def client(services):
    app = create_app(services=services, enable_scheduler=False)
    with TestClient(app) as test_client:
        yield test_client


def test_ping_pong(client):
    with client.websocket_connect("/ws/realtime") as websocket:
        websocket.send_json({"type": "ping"})
        message = websocket.receive_json()
    assert message["type"] == "pong"
    assert isinstance(message["data"]["timestamp"], int)


def test_subscribe_sends_snapshot(client, provider, services):
    provider.set_quote("TCS", 3500, 3450)
    with client.websocket_connect("/ws/realtime") as websocket:
        websocket.send_json({"type": "subscribe_market_data", "data": ["tcs"]})
        message = websocket.receive_json()
        assert services.connection_manager.subscribed_symbols() == {"TCS"}

    assert message["type"] == "market_data_update"
    assert message["data"]["TCS"]["data"]["price"] == 3500


def test_subscribe_accepts_symbols_object(client, provider):
    provider.set_quote("INFY", 1500, 1490)
    with client.websocket_connect("/ws/realtime") as websocket:
        websocket.send_json({"type": "subscribe_market_data", "data": {"symbols": ["INFY"]}})
        message = websocket.receive_json()
    assert list(message["data"]) == ["INFY"]


def test_anonymous_alert_subscription_is_denied(client):
    with client.websocket_connect("/ws/realtime") as websocket:
        websocket.send_json({"type": "subscribe_alerts"})
        message = websocket.receive_json()
    assert message["type"] == "error"
    assert "Authentication required" in message["data"]["message"]


def test_identified_user_joins_alerts_room(client, services):
    with client.websocket_connect("/ws/realtime?user_id=user1") as websocket:
        websocket.send_json({"type": "subscribe_alerts"})
        websocket.send_json({"type": "ping"})
        assert websocket.receive_json()["type"] == "pong"
        assert len(services.connection_manager.members(RoomKind.ALERTS, "user1")) == 1

        websocket.send_json({"type": "unsubscribe_alerts"})
        websocket.send_json({"type": "ping"})
        websocket.receive_json()
        assert services.connection_manager.members(RoomKind.ALERTS, "user1") == set()


def test_header_identity_for_portfolio(client, services):
    with client.websocket_connect("/ws/realtime", headers={"X-User-Id": "user7"}) as websocket:
        websocket.send_json({"type": "subscribe_portfolio"})
        websocket.send_json({"type": "ping"})
        websocket.receive_json()
        assert len(services.connection_manager.members(RoomKind.PORTFOLIO, "user7")) == 1


def test_bad_frames_get_error_events(client):
    with client.websocket_connect("/ws/realtime") as websocket:
        websocket.send_text("not json")
        assert websocket.receive_json()["data"]["message"] == "Invalid JSON"

        websocket.send_json({"type": "dance"})
        assert "Unknown message type" in websocket.receive_json()["data"]["message"]

        websocket.send_json(["no", "type"])
        assert websocket.receive_json()["type"] == "error"


def test_disconnect_releases_rooms(client, provider, services):
    provider.set_quote("TCS", 3500, 3450)
    with client.websocket_connect("/ws/realtime") as websocket:
        websocket.send_json({"type": "subscribe_market_data", "data": ["TCS"]})
        websocket.receive_json()

    assert services.connection_manager.subscribed_symbols() == set()


class CancelledSocket(FakeWebSocket):
    """Socket whose reader is cancelled, as on server shutdown."""

    def __init__(self, services):
        super().__init__()
        self.app = SimpleNamespace(state=SimpleNamespace(services=services))
        self.headers = {"x-user-id": "user1"}
        self.query_params = {}

    async def receive_text(self) -> str:
        raise asyncio.CancelledError()


@pytest.mark.asyncio
async def test_cancelled_connection_is_released(services):
    websocket = CancelledSocket(services)

    with pytest.raises(asyncio.CancelledError):
        await websocket_endpoint(websocket)

    assert websocket.accepted
    assert services.connection_manager.get_connection_stats()["total_connections"] == 0
