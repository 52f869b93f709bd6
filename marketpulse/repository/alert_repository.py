"""ClickHouse implementation of the alert repository.

Rows are versioned by ``updated_at`` in a ReplacingMergeTree: every state
change inserts the full row again with a newer version and reads go through
``FINAL``. Writes are serialised by the single alert engine per process.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
import logging

from marketpulse.domain.entities import (
    Alert,
    AlertCondition,
    AlertStats,
    AlertType,
    utc_now,
)
from marketpulse.domain.interfaces import AlertRepository
from marketpulse.repository.clickhouse_client import ClickHouseConnection

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, user_id, symbol, alert_type, condition, target_value, current_value, "
    "message, is_active, is_triggered, triggered_at, notification_sent, "
    "priority, expires_at, created_at, updated_at"
)


def _row_to_alert(row: tuple) -> Alert:
    return Alert(
        id=row[0],
        user_id=row[1],
        symbol=row[2],
        alert_type=row[3],
        condition=row[4],
        target_value=row[5],
        current_value=row[6],
        message=row[7],
        is_active=bool(row[8]),
        is_triggered=bool(row[9]),
        triggered_at=row[10],
        notification_sent=bool(row[11]),
        priority=row[12],
        expires_at=row[13],
        created_at=row[14],
        updated_at=row[15],
    )


def _alert_to_row(alert: Alert) -> tuple:
    return (
        alert.id,
        alert.user_id,
        alert.symbol,
        alert.alert_type.value,
        alert.condition.value,
        alert.target_value,
        alert.current_value,
        alert.message,
        int(alert.is_active),
        int(alert.is_triggered),
        alert.triggered_at,
        int(alert.notification_sent),
        alert.priority.value,
        alert.expires_at,
        alert.created_at,
        alert.updated_at,
    )


class ClickHouseAlertRepository(AlertRepository):
    """ClickHouse implementation for alert repository."""

    def __init__(self, connection: ClickHouseConnection):
        self._conn = connection

    def _select(self, where: str, params: Dict[str, Any], suffix: str = "") -> List[Alert]:
        query = f"SELECT {_COLUMNS} FROM alerts FINAL WHERE {where} {suffix}"
        return [_row_to_alert(row) for row in self._conn.execute(query, params)]

    def _write(self, alert: Alert, changes: Dict[str, Any]) -> Alert:
        # Versions must strictly increase or the merge may keep the old row.
        version = utc_now()
        if version <= alert.updated_at:
            version = alert.updated_at + timedelta(milliseconds=1)
        updated = alert.model_copy(update={**changes, "updated_at": version})
        self._conn.execute(f"INSERT INTO alerts ({_COLUMNS}) VALUES", [_alert_to_row(updated)])
        return updated

    def create(self, alert: Alert) -> Alert:
        self._conn.execute(f"INSERT INTO alerts ({_COLUMNS}) VALUES", [_alert_to_row(alert)])
        logger.info(f"Created alert {alert.id} for {alert.symbol}")
        return alert

    def get(self, alert_id: str) -> Optional[Alert]:
        rows = self._select("id = %(id)s", {"id": alert_id}, "LIMIT 1")
        return rows[0] if rows else None

    def find_eligible(self, now: datetime) -> List[Alert]:
        return self._select(
            "is_active = 1 AND is_triggered = 0 "
            "AND (expires_at IS NULL OR expires_at > %(now)s)",
            {"now": now},
        )

    def find_by_user(
        self,
        user_id: str,
        is_active: Optional[bool] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Alert]:
        where = "user_id = %(user_id)s"
        params: Dict[str, Any] = {"user_id": user_id, "limit": limit, "offset": offset}
        if is_active is not None:
            where += " AND is_active = %(is_active)s"
            params["is_active"] = int(is_active)
        return self._select(
            where, params, "ORDER BY created_at DESC LIMIT %(limit)s OFFSET %(offset)s"
        )

    def count_by_user(self, user_id: str, is_active: Optional[bool] = None) -> int:
        query = "SELECT count() FROM alerts FINAL WHERE user_id = %(user_id)s"
        params: Dict[str, Any] = {"user_id": user_id}
        if is_active is not None:
            query += " AND is_active = %(is_active)s"
            params["is_active"] = int(is_active)
        result = self._conn.execute(query, params)
        return int(result[0][0]) if result else 0

    def find_duplicate(
        self,
        user_id: str,
        symbol: str,
        alert_type: AlertType,
        condition: AlertCondition,
        target_value: float,
        now: datetime,
    ) -> Optional[Alert]:
        rows = self._select(
            "user_id = %(user_id)s AND symbol = %(symbol)s "
            "AND alert_type = %(alert_type)s AND condition = %(condition)s "
            "AND target_value = %(target_value)s "
            "AND is_active = 1 AND is_triggered = 0 "
            "AND (expires_at IS NULL OR expires_at > %(now)s)",
            {
                "user_id": user_id,
                "symbol": symbol,
                "alert_type": alert_type.value,
                "condition": condition.value,
                "target_value": target_value,
                "now": now,
            },
            "LIMIT 1",
        )
        return rows[0] if rows else None

    def update(self, alert_id: str, fields: Dict[str, Any]) -> Optional[Alert]:
        alert = self.get(alert_id)
        if alert is None:
            return None
        return self._write(alert, fields)

    def mark_triggered(
        self,
        alert_id: str,
        observed: float,
        triggered_at: datetime,
        expected: Optional[Alert] = None,
    ) -> Optional[Alert]:
        alert = self.get(alert_id)
        if alert is None or not alert.is_eligible(triggered_at):
            return None
        if expected is not None and not alert.same_definition(expected):
            return None
        return self._write(
            alert,
            {
                "is_triggered": True,
                "triggered_at": triggered_at,
                "current_value": observed,
            },
        )

    def update_current_value(self, alert_id: str, observed: float) -> None:
        alert = self.get(alert_id)
        if alert is None or alert.is_triggered:
            return
        self._write(alert, {"current_value": observed})

    def mark_notification_sent(self, alert_id: str) -> None:
        alert = self.get(alert_id)
        if alert is not None:
            self._write(alert, {"notification_sent": True})

    def deactivate_expired(self, now: datetime) -> int:
        expired = self._select(
            "is_active = 1 AND expires_at IS NOT NULL AND expires_at < %(now)s",
            {"now": now},
        )
        for alert in expired:
            self._write(alert, {"is_active": False})
        return len(expired)

    def stats(self, user_id: str) -> AlertStats:
        query = """
        SELECT
            count(),
            sum(is_active),
            sum(is_triggered),
            sum(is_active = 1 AND is_triggered = 0)
        FROM alerts FINAL
        WHERE user_id = %(user_id)s
        """
        result = self._conn.execute(query, {"user_id": user_id})
        if not result:
            return AlertStats()
        total, active, triggered, pending = result[0]
        return AlertStats(
            total=int(total or 0),
            active=int(active or 0),
            triggered=int(triggered or 0),
            pending=int(pending or 0),
        )
