"""Real-time fan-out of market data and user events to rooms."""
from typing import Any, Dict, Iterable, List
import logging

from marketpulse.domain.entities import Alert, BatchQuoteResult, NewsItem, RoomKind
from marketpulse.services.connection_manager import Connection, ConnectionManager
from marketpulse.services.market_data_service import MarketDataService

logger = logging.getLogger(__name__)

MARKET_DATA_UPDATE = "market_data_update"
ALERT_TRIGGERED = "alert_triggered"
PORTFOLIO_UPDATE = "portfolio_update"
NEWS_UPDATE = "news_update"


def _clean_symbols(symbols: Iterable[Any]) -> List[str]:
    cleaned = (str(s).strip().upper() for s in symbols if isinstance(s, str))
    return list(dict.fromkeys(s for s in cleaned if s))


def _serialize_batch(batch: Dict[str, BatchQuoteResult]) -> Dict[str, dict]:
    return {
        symbol: result.model_dump(mode="json", by_alias=True, exclude_none=True)
        for symbol, result in batch.items()
    }


class BroadcastService:
    """Pushes market snapshots to symbol rooms and events to user rooms."""

    def __init__(self, manager: ConnectionManager, market_data: MarketDataService):
        self._manager = manager
        self._market_data = market_data

    @property
    def manager(self) -> ConnectionManager:
        return self._manager

    async def subscribe_symbols(self, connection: Connection, symbols: Iterable[Any]) -> List[str]:
        """Join symbol rooms and send an immediate snapshot to the subscriber."""
        cleaned = _clean_symbols(symbols)
        if not cleaned:
            return []
        for symbol in cleaned:
            self._manager.join(connection, RoomKind.MARKET, symbol)
        logger.info(f"Connection {connection.connection_id} subscribed to {cleaned}")
        await self.send_snapshot(connection, cleaned)
        return cleaned

    def unsubscribe_symbols(self, connection: Connection, symbols: Iterable[Any]) -> List[str]:
        cleaned = _clean_symbols(symbols)
        for symbol in cleaned:
            self._manager.leave(connection, RoomKind.MARKET, symbol)
        logger.info(f"Connection {connection.connection_id} unsubscribed from {cleaned}")
        return cleaned

    def subscribe_news(self, connection: Connection, categories: Iterable[Any]) -> List[str]:
        joined = []
        for category in categories:
            if isinstance(category, str) and category.strip():
                self._manager.join(connection, RoomKind.NEWS, category.strip().lower())
                joined.append(category.strip().lower())
        return joined

    async def send_snapshot(self, connection: Connection, symbols: List[str]) -> None:
        batch = await self._market_data.get_batch(symbols)
        await self._manager.send(
            connection, {"type": MARKET_DATA_UPDATE, "data": _serialize_batch(batch)}
        )

    async def broadcast_market_data(self) -> int:
        """Periodic tick: refresh every symbol someone is subscribed to."""
        symbols = self._manager.subscribed_symbols()
        if not symbols:
            return 0
        return await self.broadcast_symbol_update(sorted(symbols))

    async def broadcast_symbol_update(self, symbols: Iterable[str]) -> int:
        """Emit each symbol's quote only to its own room; failures stay silent."""
        batch = await self._market_data.get_batch(symbols)
        emitted = 0
        for symbol, result in batch.items():
            if not result.ok:
                logger.debug(f"No update for {symbol}: {result.message}")
                continue
            await self._manager.broadcast(
                RoomKind.MARKET,
                symbol,
                {"type": MARKET_DATA_UPDATE, "data": _serialize_batch({symbol: result})},
            )
            emitted += 1
        logger.info(f"Market data broadcast: {emitted}/{len(batch)} symbols")
        return emitted

    async def broadcast_user_event(
        self, user_id: str, kind: RoomKind, event: str, payload: Any
    ) -> int:
        return await self._manager.broadcast(kind, user_id, {"type": event, "data": payload})

    async def broadcast_alert_to_user(self, user_id: str, alert: Alert) -> int:
        delivered = await self.broadcast_user_event(
            user_id,
            RoomKind.ALERTS,
            ALERT_TRIGGERED,
            alert.model_dump(mode="json", by_alias=True),
        )
        logger.info(f"Alert {alert.id} pushed to {delivered} connection(s) of {user_id}")
        return delivered

    async def broadcast_portfolio_update(self, user_id: str, data: Any) -> int:
        return await self.broadcast_user_event(user_id, RoomKind.PORTFOLIO, PORTFOLIO_UPDATE, data)

    async def broadcast_news_update(self, item: NewsItem) -> int:
        payload = item.model_dump(mode="json")
        category = item.category.lower()
        delivered = await self._manager.broadcast(
            RoomKind.NEWS, category, {"type": NEWS_UPDATE, "data": payload}
        )
        if category != "all":
            delivered += await self._manager.broadcast(
                RoomKind.NEWS, "all", {"type": NEWS_UPDATE, "data": payload}
            )
        return delivered
