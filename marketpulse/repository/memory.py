"""In-memory repositories for local runs and tests."""
from datetime import datetime
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional

from marketpulse.domain.entities import (
    Alert,
    AlertCondition,
    AlertStats,
    AlertType,
    MarketQuote,
    UserContact,
    utc_now,
)
from marketpulse.domain.interfaces import (
    AlertRepository,
    MarketDataRepository,
    UserDirectory,
)


class InMemoryMarketDataRepository(MarketDataRepository):
    """Dict-backed quote store keyed by symbol."""

    def __init__(self):
        self._quotes: Dict[str, MarketQuote] = {}

    def get_latest(self, symbol: str) -> Optional[MarketQuote]:
        return self._quotes.get(symbol.upper())

    def upsert(self, quote: MarketQuote) -> None:
        self._quotes[quote.symbol] = quote


class InMemoryAlertRepository(AlertRepository):
    """Dict-backed alert store; transitions are atomic under a lock."""

    def __init__(self, alerts: Iterable[Alert] = ()):
        self._alerts: Dict[str, Alert] = {a.id: a for a in alerts}
        self._lock = Lock()

    def _replace(self, alert: Alert, changes: Dict[str, Any]) -> Alert:
        updated = alert.model_copy(update={**changes, "updated_at": utc_now()})
        self._alerts[alert.id] = updated
        return updated

    def create(self, alert: Alert) -> Alert:
        with self._lock:
            self._alerts[alert.id] = alert
        return alert

    def get(self, alert_id: str) -> Optional[Alert]:
        return self._alerts.get(alert_id)

    def find_eligible(self, now: datetime) -> List[Alert]:
        return [a for a in self._alerts.values() if a.is_eligible(now)]

    def _user_alerts(self, user_id: str, is_active: Optional[bool]) -> List[Alert]:
        alerts = [a for a in self._alerts.values() if a.user_id == user_id]
        if is_active is not None:
            alerts = [a for a in alerts if a.is_active == is_active]
        return sorted(alerts, key=lambda a: a.created_at, reverse=True)

    def find_by_user(
        self,
        user_id: str,
        is_active: Optional[bool] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Alert]:
        return self._user_alerts(user_id, is_active)[offset:offset + limit]

    def count_by_user(self, user_id: str, is_active: Optional[bool] = None) -> int:
        return len(self._user_alerts(user_id, is_active))

    def find_duplicate(
        self,
        user_id: str,
        symbol: str,
        alert_type: AlertType,
        condition: AlertCondition,
        target_value: float,
        now: datetime,
    ) -> Optional[Alert]:
        for alert in self._alerts.values():
            if (
                alert.user_id == user_id
                and alert.symbol == symbol
                and alert.alert_type == alert_type
                and alert.condition == condition
                and alert.target_value == target_value
                and alert.is_eligible(now)
            ):
                return alert
        return None

    def update(self, alert_id: str, fields: Dict[str, Any]) -> Optional[Alert]:
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None:
                return None
            return self._replace(alert, fields)

    def mark_triggered(
        self,
        alert_id: str,
        observed: float,
        triggered_at: datetime,
        expected: Optional[Alert] = None,
    ) -> Optional[Alert]:
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None or not alert.is_eligible(triggered_at):
                return None
            if expected is not None and not alert.same_definition(expected):
                return None
            return self._replace(
                alert,
                {
                    "is_triggered": True,
                    "triggered_at": triggered_at,
                    "current_value": observed,
                },
            )

    def update_current_value(self, alert_id: str, observed: float) -> None:
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is not None and not alert.is_triggered:
                self._replace(alert, {"current_value": observed})

    def mark_notification_sent(self, alert_id: str) -> None:
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is not None:
                self._replace(alert, {"notification_sent": True})

    def deactivate_expired(self, now: datetime) -> int:
        count = 0
        with self._lock:
            for alert in list(self._alerts.values()):
                if alert.is_active and alert.expires_at is not None and alert.expires_at < now:
                    self._replace(alert, {"is_active": False})
                    count += 1
        return count

    def stats(self, user_id: str) -> AlertStats:
        alerts = self._user_alerts(user_id, None)
        return AlertStats(
            total=len(alerts),
            active=sum(1 for a in alerts if a.is_active),
            triggered=sum(1 for a in alerts if a.is_triggered),
            pending=sum(1 for a in alerts if a.is_active and not a.is_triggered),
        )


class StaticUserDirectory(UserDirectory):
    """User contacts supplied up front (config, fixtures)."""

    def __init__(self, contacts: Iterable[UserContact] = ()):
        self._contacts = {c.user_id: c for c in contacts}

    def add(self, contact: UserContact) -> None:
        self._contacts[contact.user_id] = contact

    def get_contact(self, user_id: str) -> Optional[UserContact]:
        return self._contacts.get(user_id)
