"""Domain exceptions."""
from typing import Optional


class MarketPulseError(Exception):
    """Base class for all application errors."""


class UpstreamUnavailable(MarketPulseError):
    """A single upstream provider failed, timed out or returned garbage."""

    def __init__(self, provider: str, symbol: str, reason: str = ""):
        self.provider = provider
        self.symbol = symbol
        self.reason = reason
        super().__init__(f"{provider} unavailable for {symbol}: {reason}".rstrip(": "))


class NotAvailable(MarketPulseError):
    """No data for a symbol in cache, store or any provider."""

    def __init__(self, symbol: str):
        self.symbol = symbol
        super().__init__(f"Market data not available for {symbol}")


class PersistenceError(MarketPulseError):
    """Durable store read or write failed."""


class NotificationError(MarketPulseError):
    """Email or push delivery failed."""


class AlertValidationError(MarketPulseError):
    """Alert definition rejected at creation or update time."""


class AlertNotFound(MarketPulseError):
    """Alert does not exist or is not owned by the caller."""

    def __init__(self, alert_id: str):
        self.alert_id = alert_id
        super().__init__(f"Alert {alert_id} not found")


class SubscriptionDenied(MarketPulseError):
    """Connection may not join the requested room."""

    def __init__(self, room: str, reason: Optional[str] = None):
        self.room = room
        super().__init__(reason or f"Not allowed to join {room}")
