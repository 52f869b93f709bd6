"""FastAPI dependency injection setup.

The composition root builds every service once at startup and stores the
container on ``app.state.services``; route handlers pull what they need
through the getters below.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from fastapi import Header, HTTPException, Request

from marketpulse.config import (
    app_config,
    email_config,
    market_data_config,
)
from marketpulse.domain.entities import UserContact, utc_now
from marketpulse.domain.interfaces import (
    AlertRepository,
    EmailTransport,
    MarketDataRepository,
    UserDirectory,
)
from marketpulse.infrastructure.email_client import SmtpEmailTransport
from marketpulse.infrastructure.providers import QuoteProvider, build_providers
from marketpulse.repository.alert_repository import ClickHouseAlertRepository
from marketpulse.repository.clickhouse_client import ClickHouseConnection
from marketpulse.repository.market_repository import ClickHouseMarketDataRepository
from marketpulse.repository.memory import (
    InMemoryAlertRepository,
    InMemoryMarketDataRepository,
    StaticUserDirectory,
)
from marketpulse.services.alert_engine import AlertEngine
from marketpulse.services.alert_service import AlertService
from marketpulse.services.broadcast_service import BroadcastService
from marketpulse.services.connection_manager import ConnectionManager
from marketpulse.services.market_data_service import MarketDataService
from marketpulse.services.notification_service import NotificationService


@dataclass
class Services:
    """Everything the app wires together at startup."""
    market_data: MarketDataService
    alert_service: AlertService
    alert_engine: AlertEngine
    connection_manager: ConnectionManager
    broadcast: BroadcastService
    notifications: NotificationService
    connection: Optional[ClickHouseConnection] = None

    async def close(self) -> None:
        await self.notifications.drain()
        await self.market_data.close()
        if self.connection is not None:
            self.connection.disconnect()


def build_services(
    market_repository: MarketDataRepository,
    alert_repository: AlertRepository,
    providers: List[QuoteProvider],
    user_directory: Optional[UserDirectory] = None,
    email_transport: Optional[EmailTransport] = None,
    clock: Callable[[], datetime] = utc_now,
    cache_ttl: float = market_data_config.CACHE_TTL_SECONDS,
    fetch_timeout: float = market_data_config.FETCH_TIMEOUT_SECONDS,
    connection: Optional[ClickHouseConnection] = None,
) -> Services:
    """Wire services from their collaborators."""
    market_data = MarketDataService(
        market_repository,
        providers,
        cache_ttl=cache_ttl,
        fetch_timeout=fetch_timeout,
        clock=clock,
    )
    manager = ConnectionManager()
    broadcast = BroadcastService(manager, market_data)
    notifications = NotificationService(
        alert_repository,
        broadcast,
        user_directory or StaticUserDirectory(),
        email_transport,
    )
    return Services(
        market_data=market_data,
        alert_service=AlertService(alert_repository, clock=clock),
        alert_engine=AlertEngine(alert_repository, market_data, notifications, clock=clock),
        connection_manager=manager,
        broadcast=broadcast,
        notifications=notifications,
        connection=connection,
    )


def parse_user_contacts(raw: str) -> List[UserContact]:
    """Parse ``user_id:address`` pairs separated by commas."""
    contacts = []
    for pair in raw.split(","):
        user_id, _, address = pair.strip().partition(":")
        if user_id and address:
            contacts.append(UserContact(user_id=user_id.strip(), email=address.strip()))
    return contacts


def build_default_services() -> Services:
    """Services backed by the configured storage and real providers."""
    connection = None
    if app_config.STORAGE_BACKEND == "memory":
        market_repository = InMemoryMarketDataRepository()
        alert_repository = InMemoryAlertRepository()
    else:
        connection = ClickHouseConnection()
        connection.connect()
        connection.init_schema()
        market_repository = ClickHouseMarketDataRepository(connection)
        alert_repository = ClickHouseAlertRepository(connection)

    return build_services(
        market_repository,
        alert_repository,
        build_providers(market_data_config),
        user_directory=StaticUserDirectory(parse_user_contacts(email_config.USER_CONTACTS)),
        email_transport=SmtpEmailTransport(email_config) if email_config.enabled else None,
        connection=connection,
    )


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise RuntimeError("Services not initialized")
    return services


def get_market_data_service(request: Request) -> MarketDataService:
    """Get market data service dependency."""
    return get_services(request).market_data


def get_alert_service(request: Request) -> AlertService:
    """Get alert service dependency."""
    return get_services(request).alert_service


def get_alert_engine(request: Request) -> AlertEngine:
    return get_services(request).alert_engine


def get_connection_manager(request: Request) -> ConnectionManager:
    return get_services(request).connection_manager


def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Caller identity as forwarded by the gateway."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()
