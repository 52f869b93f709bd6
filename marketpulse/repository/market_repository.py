"""ClickHouse implementation of the market quote repository."""
from typing import Optional
import logging

from marketpulse.domain.entities import MarketQuote
from marketpulse.domain.interfaces import MarketDataRepository
from marketpulse.repository.clickhouse_client import ClickHouseConnection

logger = logging.getLogger(__name__)

_COLUMNS = (
    "symbol, price, change, change_percent, volume, day_high, day_low, "
    "previous_close, market_cap, source, last_updated"
)


class ClickHouseMarketDataRepository(MarketDataRepository):
    """Latest quote per symbol, kept in a ReplacingMergeTree."""

    def __init__(self, connection: ClickHouseConnection):
        self._conn = connection

    def get_latest(self, symbol: str) -> Optional[MarketQuote]:
        """Get latest stored quote for a symbol."""
        query = f"""
        SELECT {_COLUMNS}
        FROM market_quotes FINAL
        WHERE symbol = %(symbol)s
        ORDER BY last_updated DESC
        LIMIT 1
        """
        result = self._conn.execute(query, {"symbol": symbol.upper()})
        if not result:
            return None
        row = result[0]
        return MarketQuote(
            symbol=row[0],
            price=row[1],
            change=row[2],
            change_percent=row[3],
            volume=row[4],
            day_high=row[5],
            day_low=row[6],
            previous_close=row[7],
            market_cap=row[8],
            source=row[9],
            timestamp=row[10],
        )

    def upsert(self, quote: MarketQuote) -> None:
        """Insert a new version of the symbol's row."""
        query = """
        INSERT INTO market_quotes (symbol, exchange, price, change, change_percent,
            volume, day_high, day_low, previous_close, market_cap, source, last_updated)
        VALUES
        """
        self._conn.execute(
            query,
            [(
                quote.symbol,
                quote.exchange,
                quote.price,
                quote.change,
                quote.change_percent,
                quote.volume,
                quote.day_high,
                quote.day_low,
                quote.previous_close,
                quote.market_cap,
                quote.source,
                quote.timestamp,
            )],
        )
        logger.debug(f"Upserted quote for {quote.symbol}")
