"""Alert business logic."""
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging
import math
import uuid

from marketpulse.domain.entities import (
    Alert,
    AlertCreate,
    AlertPriority,
    AlertStats,
    AlertType,
    AlertUpdate,
    utc_now,
)
from marketpulse.domain.errors import AlertNotFound, AlertValidationError
from marketpulse.domain.interfaces import AlertRepository

logger = logging.getLogger(__name__)

# Fields a user may still change once an alert has triggered.
TRIGGERED_EDITABLE = {"is_active", "message"}


def calculate_priority(alert_type: AlertType, target_value: float) -> AlertPriority:
    """Default priority: expensive price targets matter more."""
    if alert_type != AlertType.PRICE:
        return AlertPriority.MEDIUM
    if target_value > 1000:
        return AlertPriority.HIGH
    if target_value > 100:
        return AlertPriority.MEDIUM
    return AlertPriority.LOW


class AlertService:
    """Business logic for user alert definitions."""

    def __init__(
        self,
        repository: AlertRepository,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ):
        self._repository = repository
        self._clock = clock
        self._new_id = id_factory

    def create_alert(self, user_id: str, data: AlertCreate) -> Alert:
        now = self._clock()
        if data.expires_at is not None and data.expires_at <= now:
            raise AlertValidationError("Expiry date must be in the future")

        duplicate = self._repository.find_duplicate(
            user_id, data.symbol, data.alert_type, data.condition, data.target_value, now
        )
        if duplicate is not None:
            raise AlertValidationError(
                f"An active alert with the same condition already exists ({duplicate.id})"
            )

        alert = Alert(
            id=self._new_id(),
            user_id=user_id,
            symbol=data.symbol,
            alert_type=data.alert_type,
            condition=data.condition,
            target_value=data.target_value,
            message=data.message
            or f"{data.symbol} {data.condition.value} {data.target_value:g}",
            priority=data.priority or calculate_priority(data.alert_type, data.target_value),
            expires_at=data.expires_at,
            created_at=now,
            updated_at=now,
        )
        created = self._repository.create(alert)
        logger.info(f"Alert {created.id} created for {user_id} on {created.symbol}")
        return created.as_of(now)

    def get_alert(self, alert_id: str, user_id: str) -> Alert:
        alert = self._repository.get(alert_id)
        if alert is None or alert.user_id != user_id:
            raise AlertNotFound(alert_id)
        return alert.as_of(self._clock())

    def list_alerts(
        self,
        user_id: str,
        is_active: Optional[bool] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Alert], Dict[str, int]]:
        """One page of a user's alerts plus pagination info."""
        page = max(page, 1)
        limit = max(limit, 1)
        alerts = self._repository.find_by_user(
            user_id, is_active=is_active, limit=limit, offset=(page - 1) * limit
        )
        total_items = self._repository.count_by_user(user_id, is_active=is_active)
        now = self._clock()
        alerts = [alert.as_of(now) for alert in alerts]
        pagination = {
            "current": page,
            "total": math.ceil(total_items / limit),
            "count": len(alerts),
            "total_items": total_items,
        }
        return alerts, pagination

    def update_alert(self, alert_id: str, user_id: str, data: AlertUpdate) -> Alert:
        alert = self.get_alert(alert_id, user_id)
        changes: Dict[str, Any] = data.model_dump(exclude_unset=True)
        changes = {k: v for k, v in changes.items() if v is not None}
        if not changes:
            return alert

        if alert.is_triggered:
            locked = set(changes) - TRIGGERED_EDITABLE
            if locked:
                raise AlertValidationError(
                    f"Triggered alerts only accept isActive or message changes "
                    f"(got {', '.join(sorted(locked))})"
                )

        expires_at = changes.get("expires_at")
        if expires_at is not None and expires_at <= self._clock():
            raise AlertValidationError("Expiry date must be in the future")

        updated = self._repository.update(alert_id, changes)
        if updated is None:
            raise AlertNotFound(alert_id)
        logger.info(f"Alert {alert_id} updated: {sorted(changes)}")
        return updated.as_of(self._clock())

    def delete_alert(self, alert_id: str, user_id: str) -> None:
        """Soft delete: the alert is deactivated, history is kept."""
        self.get_alert(alert_id, user_id)
        self._repository.update(alert_id, {"is_active": False})
        logger.info(f"Alert {alert_id} deactivated by {user_id}")

    def get_stats(self, user_id: str) -> AlertStats:
        return self._repository.stats(user_id)

    def expire_alerts(self) -> int:
        """Deactivate every active alert whose expiry has passed."""
        count = self._repository.deactivate_expired(self._clock())
        if count:
            logger.info(f"Deactivated {count} expired alerts")
        return count
