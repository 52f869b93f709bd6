"""Repository and collaborator interfaces (Ports)."""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from marketpulse.domain.entities import (
    Alert,
    AlertCondition,
    AlertStats,
    AlertType,
    MarketQuote,
    UserContact,
)


class MarketDataRepository(ABC):
    """Durable store for the latest quote per symbol."""

    @abstractmethod
    def get_latest(self, symbol: str) -> Optional[MarketQuote]:
        """Get latest stored quote for a symbol."""
        pass

    @abstractmethod
    def upsert(self, quote: MarketQuote) -> None:
        """Insert or overwrite the quote for its symbol."""
        pass


class AlertRepository(ABC):
    """Durable store for alert definitions and trigger state."""

    @abstractmethod
    def create(self, alert: Alert) -> Alert:
        pass

    @abstractmethod
    def get(self, alert_id: str) -> Optional[Alert]:
        pass

    @abstractmethod
    def find_eligible(self, now: datetime) -> List[Alert]:
        """Active, untriggered, unexpired alerts."""
        pass

    @abstractmethod
    def find_by_user(
        self,
        user_id: str,
        is_active: Optional[bool] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Alert]:
        """Alerts of one user, newest first."""
        pass

    @abstractmethod
    def count_by_user(self, user_id: str, is_active: Optional[bool] = None) -> int:
        pass

    @abstractmethod
    def find_duplicate(
        self,
        user_id: str,
        symbol: str,
        alert_type: AlertType,
        condition: AlertCondition,
        target_value: float,
        now: datetime,
    ) -> Optional[Alert]:
        """An eligible alert with the same definition, if any."""
        pass

    @abstractmethod
    def update(self, alert_id: str, fields: Dict[str, Any]) -> Optional[Alert]:
        """Apply user-editable field changes."""
        pass

    @abstractmethod
    def mark_triggered(
        self,
        alert_id: str,
        observed: float,
        triggered_at: datetime,
        expected: Optional[Alert] = None,
    ) -> Optional[Alert]:
        """Transition an eligible alert to triggered.

        Returns the updated alert, or None when the alert was no longer
        eligible at ``triggered_at`` (already triggered, deactivated or expired)
        or when its definition no longer matches the ``expected`` version the
        caller evaluated.
        """
        pass

    @abstractmethod
    def update_current_value(self, alert_id: str, observed: float) -> None:
        pass

    @abstractmethod
    def mark_notification_sent(self, alert_id: str) -> None:
        pass

    @abstractmethod
    def deactivate_expired(self, now: datetime) -> int:
        """Deactivate active alerts whose expiry has passed; return the count."""
        pass

    @abstractmethod
    def stats(self, user_id: str) -> AlertStats:
        pass


class UserDirectory(ABC):
    """Lookup of alert owners' notification details."""

    @abstractmethod
    def get_contact(self, user_id: str) -> Optional[UserContact]:
        pass


class EmailTransport(ABC):
    """Outbound email delivery."""

    @abstractmethod
    async def send(self, to_address: str, subject: str, body: str) -> None:
        """Send one message; raises NotificationError on failure."""
        pass
