"""WebSocket endpoint for real-time market data, alerts and news."""
from typing import Any, List, Optional
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
import json
import logging

from marketpulse.api.dependencies import get_connection_manager
from marketpulse.domain.entities import RoomKind, utc_now
from marketpulse.domain.errors import MarketPulseError, SubscriptionDenied
from marketpulse.services.broadcast_service import BroadcastService
from marketpulse.services.connection_manager import Connection, ConnectionManager

logger = logging.getLogger(__name__)
router = APIRouter()


def _error(message: str) -> dict:
    return {"type": "error", "data": {"message": message}}


def _as_list(data: Any, key: str) -> List[Any]:
    """Payloads may be a bare list or ``{key: [...]}``."""
    if isinstance(data, dict):
        data = data.get(key)
    return data if isinstance(data, list) else []


def _identify(websocket: WebSocket) -> Optional[str]:
    user_id = websocket.headers.get("x-user-id") or websocket.query_params.get("user_id")
    return user_id.strip() if user_id and user_id.strip() else None


async def handle_message(
    broadcast: BroadcastService, connection: Connection, message: Any
) -> None:
    """Dispatch one client frame; protocol errors go back as ``error`` events."""
    manager = broadcast.manager
    if not isinstance(message, dict) or not isinstance(message.get("type"), str):
        await manager.send(connection, _error("Message must be an object with a type"))
        return

    kind = message["type"]
    data = message.get("data")
    try:
        if kind == "subscribe_market_data":
            await broadcast.subscribe_symbols(connection, _as_list(data, "symbols"))
        elif kind == "unsubscribe_market_data":
            broadcast.unsubscribe_symbols(connection, _as_list(data, "symbols"))
        elif kind == "subscribe_portfolio":
            manager.join(connection, RoomKind.PORTFOLIO, connection.user_id)
        elif kind == "subscribe_news":
            broadcast.subscribe_news(connection, _as_list(data, "categories"))
        elif kind == "subscribe_alerts":
            manager.join(connection, RoomKind.ALERTS, connection.user_id)
        elif kind == "unsubscribe_alerts":
            manager.leave(connection, RoomKind.ALERTS, connection.user_id)
        elif kind == "ping":
            await manager.send(
                connection,
                {"type": "pong", "data": {"timestamp": int(utc_now().timestamp() * 1000)}},
            )
        else:
            await manager.send(connection, _error(f"Unknown message type: {kind}"))
    except SubscriptionDenied as e:
        logger.warning(f"Connection {connection.connection_id} denied {e.room}: {e}")
        await manager.send(connection, _error(str(e)))
    except MarketPulseError as e:
        logger.error(f"Error handling {kind}: {e}")
        await manager.send(connection, _error(str(e)))


@router.websocket("/ws/realtime")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for subscriptions and pushed updates."""
    services = websocket.app.state.services
    manager: ConnectionManager = services.connection_manager
    connection = await manager.connect(websocket, user_id=_identify(websocket))
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                await manager.send(connection, _error("Invalid JSON"))
                continue
            await handle_message(services.broadcast, connection, message)
    except WebSocketDisconnect:
        logger.debug(f"Client {connection.connection_id} closed the socket")
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        manager.disconnect(connection)


@router.get("/api/v1/realtime/stats", tags=["realtime"])
async def realtime_stats(
    manager: ConnectionManager = Depends(get_connection_manager),
) -> dict:
    """Connection and room statistics."""
    return manager.get_connection_stats()
