"""Pytest configuration and fixtures."""
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set
import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from marketpulse.api.dependencies import build_services
from marketpulse.domain.entities import Alert, AlertCondition, AlertType, MarketQuote
from marketpulse.domain.errors import UpstreamUnavailable
from marketpulse.infrastructure.providers import QuoteProvider
from marketpulse.repository.memory import (
    InMemoryAlertRepository,
    InMemoryMarketDataRepository,
    StaticUserDirectory,
)
from marketpulse.services.market_data_service import MarketDataService


class FixedClock:
    """Deterministic clock; advance it explicitly."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeProvider(QuoteProvider):
    """Serves canned quotes and records every upstream call."""

    def __init__(self, clock, name: str = "fake", delay: float = 0.0):
        self.name = name
        self._clock = clock
        self.delay = delay
        self.quotes: Dict[str, dict] = {}
        self.failing: Set[str] = set()
        self.calls: List[str] = []

    def set_quote(
        self,
        symbol: str,
        price: float,
        previous_close: Optional[float] = None,
        volume: int = 0,
    ) -> None:
        self.quotes[symbol.upper()] = {
            "price": price,
            "previous_close": previous_close,
            "volume": volume,
        }

    async def fetch_quote(self, symbol: str) -> MarketQuote:
        self.calls.append(symbol)
        if self.delay:
            await asyncio.sleep(self.delay)
        if symbol in self.failing or symbol not in self.quotes:
            raise UpstreamUnavailable(self.name, symbol, "no data")
        raw = self.quotes[symbol]
        return MarketQuote.from_snapshot(
            symbol=symbol,
            price=raw["price"],
            previous_close=raw["previous_close"],
            volume=raw["volume"],
            source=self.name,
            timestamp=self._clock(),
        )


class FakeWebSocket:
    """Stands in for a Starlette WebSocket on the send side."""

    def __init__(self, fail: bool = False):
        self.accepted = False
        self.fail = fail
        self.sent: List[dict] = []

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, message: dict) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(message)

    def of_type(self, message_type: str) -> List[dict]:
        return [m for m in self.sent if m["type"] == message_type]


def make_alert(
    alert_id: str = "a1",
    user_id: str = "user1",
    symbol: str = "NIFTY",
    alert_type: AlertType = AlertType.PRICE,
    condition: AlertCondition = AlertCondition.ABOVE,
    target_value: float = 20000.0,
    **overrides,
) -> Alert:
    return Alert(
        id=alert_id,
        user_id=user_id,
        symbol=symbol,
        alert_type=alert_type,
        condition=condition,
        target_value=target_value,
        message=overrides.pop("message", f"{symbol} {condition.value} {target_value}"),
        **overrides,
    )


@pytest.fixture
def clock():
    return FixedClock(datetime(2025, 1, 6, 9, 30, tzinfo=timezone.utc))


@pytest.fixture
def provider(clock):
    return FakeProvider(clock)


@pytest.fixture
def market_repository():
    return InMemoryMarketDataRepository()


@pytest.fixture
def alert_repository():
    return InMemoryAlertRepository()


@pytest.fixture
def user_directory():
    return StaticUserDirectory()


@pytest.fixture
def market_data(market_repository, provider, clock):
    return MarketDataService(
        market_repository, [provider], cache_ttl=60, fetch_timeout=1, clock=clock
    )


@pytest.fixture
def mock_email_transport():
    """Mock email transport."""
    transport = MagicMock()
    transport.send = AsyncMock(return_value=None)
    return transport


@pytest.fixture
def services(market_repository, alert_repository, provider, user_directory, clock):
    return build_services(
        market_repository,
        alert_repository,
        [provider],
        user_directory=user_directory,
        clock=clock,
        cache_ttl=60,
        fetch_timeout=1,
    )
