"""Periodic evaluation of eligible alerts against live market data."""
from datetime import datetime
from typing import Callable, Dict, List, Optional
import asyncio
import logging

from marketpulse.domain.entities import (
    Alert,
    AlertCondition,
    AlertCycleResult,
    AlertType,
    BatchQuoteResult,
    MarketQuote,
    utc_now,
)
from marketpulse.domain.errors import PersistenceError
from marketpulse.domain.interfaces import AlertRepository
from marketpulse.services.market_data_service import MarketDataService
from marketpulse.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

EQUALS_EPSILON = 0.01


def observed_value(alert_type: AlertType, quote: MarketQuote) -> float:
    """The quote field an alert type watches."""
    if alert_type == AlertType.PRICE:
        return quote.price
    if alert_type == AlertType.VOLUME:
        return float(quote.volume)
    # Percent alerts fire on the size of the move in either direction.
    return abs(quote.change_percent)


def condition_met(condition: AlertCondition, observed: float, target: float) -> bool:
    if condition == AlertCondition.ABOVE:
        return observed >= target
    if condition == AlertCondition.BELOW:
        return observed <= target
    return abs(observed - target) < EQUALS_EPSILON


class AlertEngine:
    """Runs alert check cycles; at most one cycle is in flight at a time.

    A cycle loads every eligible alert, fetches one batch of quotes for their
    symbols and either triggers each alert (atomically, via the repository)
    or records the latest observed value. Notifications are dispatched in the
    background so a slow email never holds the cycle.
    """

    def __init__(
        self,
        repository: AlertRepository,
        market_data: MarketDataService,
        notifier: NotificationService,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._repository = repository
        self._market_data = market_data
        self._notifier = notifier
        self._clock = clock
        self._lock = asyncio.Lock()
        self.last_result: Optional[AlertCycleResult] = None
        self.last_run_at: Optional[datetime] = None

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def run_cycle(self) -> AlertCycleResult:
        if self._lock.locked():
            logger.warning("Alert check already running, skipping this cycle")
            return AlertCycleResult(skipped=True)

        async with self._lock:
            result = await self._evaluate()
            self.last_result = result
            self.last_run_at = self._clock()
            return result

    async def _evaluate(self) -> AlertCycleResult:
        try:
            alerts = self._repository.find_eligible(self._clock())
        except PersistenceError as e:
            logger.error(f"Could not load eligible alerts: {e}")
            return AlertCycleResult()

        if not alerts:
            logger.debug("No eligible alerts to check")
            return AlertCycleResult()

        symbols = pending_symbols(alerts)
        quotes = await self._market_data.get_batch(symbols)

        triggered = 0
        for alert in alerts:
            if self._evaluate_alert(alert, quotes):
                triggered += 1

        logger.info(
            f"Alert check complete: {len(alerts)} checked, {triggered} triggered "
            f"across {len(symbols)} symbols"
        )
        return AlertCycleResult(checked=len(alerts), triggered=triggered)

    def _evaluate_alert(self, alert: Alert, quotes: Dict[str, BatchQuoteResult]) -> bool:
        result = quotes.get(alert.symbol)
        if result is None or not result.ok:
            return False

        observed = observed_value(alert.alert_type, result.data)
        try:
            if not condition_met(alert.condition, observed, alert.target_value):
                self._repository.update_current_value(alert.id, observed)
                return False

            updated = self._repository.mark_triggered(
                alert.id, observed, self._clock(), expected=alert
            )
        except PersistenceError as e:
            logger.error(f"Persistence failure on alert {alert.id}: {e}")
            return False

        if updated is None:
            logger.info(f"Alert {alert.id} changed or no longer eligible, not triggering")
            return False

        logger.info(
            f"Alert {alert.id} triggered: {alert.symbol} {alert.alert_type.value} "
            f"{alert.condition.value} {alert.target_value} (observed {observed})"
        )
        self._notifier.dispatch(updated)
        return True


def pending_symbols(alerts: List[Alert]) -> List[str]:
    """Distinct symbols of the given alerts, first-seen order."""
    return list(dict.fromkeys(alert.symbol for alert in alerts))
