"""Room membership for real-time WebSocket connections."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set
import logging
import uuid

from marketpulse.domain.entities import RoomKind, room_name, utc_now
from marketpulse.domain.errors import SubscriptionDenied

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Connection:
    """One client connection and the rooms it has joined."""
    websocket: Any
    user_id: Optional[str] = None
    connection_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    connected_at: datetime = field(default_factory=utc_now)
    symbols: Set[str] = field(default_factory=set)
    news_categories: Set[str] = field(default_factory=set)
    portfolio_room: Optional[str] = None
    alerts_room: Optional[str] = None

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def rooms(self) -> Set[str]:
        rooms = {room_name(RoomKind.MARKET, s) for s in self.symbols}
        rooms |= {room_name(RoomKind.NEWS, c) for c in self.news_categories}
        if self.portfolio_room:
            rooms.add(self.portfolio_room)
        if self.alerts_room:
            rooms.add(self.alerts_room)
        return rooms


class ConnectionManager:
    """Manage WebSocket connections and named rooms for broadcasting."""

    def __init__(self):
        self._connections: Dict[str, Connection] = {}
        self._rooms: Dict[str, Set[Connection]] = {}

    @property
    def active_connections(self) -> List[Connection]:
        return list(self._connections.values())

    async def connect(
        self, websocket: Any, user_id: Optional[str] = None, accept: bool = True
    ) -> Connection:
        if accept:
            await websocket.accept()
        connection = Connection(websocket=websocket, user_id=user_id)
        self._connections[connection.connection_id] = connection
        logger.info(
            f"WebSocket connected ({user_id or 'anonymous'}). "
            f"Total: {len(self._connections)}"
        )
        return connection

    def disconnect(self, connection: Connection) -> None:
        """Drop the connection and every room membership it holds."""
        for room in connection.rooms:
            self._remove_member(room, connection)
        connection.symbols.clear()
        connection.news_categories.clear()
        connection.portfolio_room = None
        connection.alerts_room = None
        self._connections.pop(connection.connection_id, None)
        logger.info(f"WebSocket disconnected. Total: {len(self._connections)}")

    def join(self, connection: Connection, kind: RoomKind, key: Optional[str] = None) -> str:
        """Add the connection to a room and return the room name."""
        if kind.user_scoped:
            if not connection.authenticated:
                raise SubscriptionDenied(room_name(kind, key or "?"), "Authentication required")
            key = key or connection.user_id
            if key != connection.user_id:
                raise SubscriptionDenied(room_name(kind, key))
        elif not key:
            raise ValueError(f"Room key required for {kind.value} rooms")

        if kind == RoomKind.MARKET:
            key = key.strip().upper()
            connection.symbols.add(key)
        elif kind == RoomKind.NEWS:
            connection.news_categories.add(key)

        room = room_name(kind, key)
        if kind == RoomKind.PORTFOLIO:
            connection.portfolio_room = room
        elif kind == RoomKind.ALERTS:
            connection.alerts_room = room

        self._rooms.setdefault(room, set()).add(connection)
        return room

    def leave(self, connection: Connection, kind: RoomKind, key: Optional[str] = None) -> None:
        if kind == RoomKind.MARKET and key:
            key = key.strip().upper()
            connection.symbols.discard(key)
        elif kind == RoomKind.NEWS and key:
            connection.news_categories.discard(key)
        elif kind == RoomKind.PORTFOLIO:
            key = key or connection.user_id
            connection.portfolio_room = None
        elif kind == RoomKind.ALERTS:
            key = key or connection.user_id
            connection.alerts_room = None
        if key:
            self._remove_member(room_name(kind, key), connection)

    def members(self, kind: RoomKind, key: str) -> Set[Connection]:
        return set(self._rooms.get(room_name(kind, key), ()))

    def subscribed_symbols(self) -> Set[str]:
        """Union of symbols across all joined market rooms."""
        prefix = f"{RoomKind.MARKET.value}_"
        return {
            room[len(prefix):]
            for room, members in self._rooms.items()
            if room.startswith(prefix) and members
        }

    async def send(self, connection: Connection, message: dict) -> bool:
        try:
            await connection.websocket.send_json(message)
            return True
        except Exception as e:
            logger.error(f"Error sending to {connection.connection_id}: {e}")
            return False

    async def broadcast(self, kind: RoomKind, key: str, message: dict) -> int:
        """Send a message to every member of one room; returns deliveries."""
        delivered = 0
        for connection in list(self._rooms.get(room_name(kind, key), ())):
            if await self.send(connection, message):
                delivered += 1
        return delivered

    def get_connection_stats(self) -> dict:
        return {
            "total_connections": len(self._connections),
            "authenticated_users": len(
                {c.user_id for c in self._connections.values() if c.authenticated}
            ),
            "rooms": len(self._rooms),
            "connections": [
                {
                    "connection_id": c.connection_id,
                    "user_id": c.user_id,
                    "connected_at": c.connected_at.isoformat(),
                    "subscriptions": sorted(c.symbols),
                }
                for c in self._connections.values()
            ],
        }

    def _remove_member(self, room: str, connection: Connection) -> None:
        members = self._rooms.get(room)
        if members is None:
            return
        members.discard(connection)
        if not members:
            del self._rooms[room]
