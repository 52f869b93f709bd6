"""ClickHouse database connection management."""
from typing import Any, List, Optional
import logging

from clickhouse_driver import Client

from marketpulse.config import clickhouse_config
from marketpulse.domain.errors import PersistenceError

logger = logging.getLogger(__name__)

# Each state change inserts a new row version; readers use FINAL.
SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS market_quotes (
        symbol String,
        exchange LowCardinality(String),
        price Float64,
        change Float64,
        change_percent Float64,
        volume UInt64,
        day_high Nullable(Float64),
        day_low Nullable(Float64),
        previous_close Nullable(Float64),
        market_cap Nullable(Float64),
        source LowCardinality(String),
        last_updated DateTime64(3, 'UTC')
    )
    ENGINE = ReplacingMergeTree(last_updated)
    ORDER BY symbol
    TTL toDateTime(last_updated) + INTERVAL 7 DAY
    """,
    """
    CREATE TABLE IF NOT EXISTS alerts (
        id String,
        user_id String,
        symbol String,
        alert_type LowCardinality(String),
        condition LowCardinality(String),
        target_value Float64,
        current_value Float64,
        message String,
        is_active UInt8,
        is_triggered UInt8,
        triggered_at Nullable(DateTime64(3, 'UTC')),
        notification_sent UInt8,
        priority LowCardinality(String),
        expires_at Nullable(DateTime64(3, 'UTC')),
        created_at DateTime64(3, 'UTC'),
        updated_at DateTime64(3, 'UTC')
    )
    ENGINE = ReplacingMergeTree(updated_at)
    ORDER BY id
    """,
]


class ClickHouseConnection:
    """Manages ClickHouse database connection."""

    def __init__(
        self,
        host: str = None,
        port: int = None,
        database: str = None,
        user: str = None,
        password: str = None,
    ):
        self.host = host or clickhouse_config.HOST
        self.port = port or clickhouse_config.PORT
        self.database = database or clickhouse_config.DATABASE
        self.user = user or clickhouse_config.USER
        self.password = password or clickhouse_config.PASSWORD
        self._client: Optional[Client] = None

    def connect(self) -> None:
        """Establish connection to ClickHouse."""
        try:
            self._client = Client(
                host=self.host,
                port=self.port,
                database=self.database,
                user=self.user,
                password=self.password,
            )
            logger.info(f"Connected to ClickHouse at {self.host}:{self.port}")
        except Exception as e:
            logger.error(f"Failed to connect to ClickHouse: {e}")
            raise PersistenceError(f"Cannot connect to ClickHouse: {e}") from e

    def disconnect(self) -> None:
        """Close connection to ClickHouse."""
        if self._client:
            self._client.disconnect()
            self._client = None
            logger.info("Disconnected from ClickHouse")

    def init_schema(self) -> None:
        """Create tables if they do not exist."""
        for statement in SCHEMA:
            self.execute(statement)
        logger.info("ClickHouse schema ready")

    def execute(self, query: str, params: Optional[Any] = None) -> List[Any]:
        """Execute a query and return results.

        ``params`` is a dict for SELECT/ALTER and a list of row tuples for INSERT.
        """
        if not self._client:
            raise PersistenceError("Not connected to ClickHouse")
        try:
            return self._client.execute(query, params if params is not None else {})
        except Exception as e:
            raise PersistenceError(f"ClickHouse query failed: {e}") from e
