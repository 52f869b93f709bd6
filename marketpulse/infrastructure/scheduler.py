"""APScheduler setup for periodic jobs."""
from typing import List, Optional
import logging

from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from marketpulse.config import SchedulerConfig, scheduler_config
from marketpulse.services.alert_engine import AlertEngine
from marketpulse.services.alert_service import AlertService
from marketpulse.services.broadcast_service import BroadcastService
from marketpulse.services.market_data_service import MarketDataService

logger = logging.getLogger(__name__)


class MarketScheduler:
    """Owns the periodic jobs: alert checks, broadcasts, expiry and cache upkeep.

    Every job body catches and logs its own failures so one bad tick never
    unschedules the job.
    """

    def __init__(
        self,
        alert_engine: AlertEngine,
        alert_service: AlertService,
        broadcast: BroadcastService,
        market_data: MarketDataService,
        tracked_symbols: List[str],
        config: SchedulerConfig = scheduler_config,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self._engine = alert_engine
        self._alerts = alert_service
        self._broadcast = broadcast
        self._market_data = market_data
        self._tracked = list(tracked_symbols)
        self._config = config
        self._scheduler = scheduler or AsyncIOScheduler(timezone="UTC")
        self._configure()

    def _configure(self) -> None:
        defaults = {"max_instances": 1, "coalesce": True, "replace_existing": True}
        self._scheduler.add_job(
            self.run_alert_check,
            IntervalTrigger(seconds=self._config.ALERT_CHECK_INTERVAL_SECONDS),
            id="alert_check",
            name="Check active alerts",
            **defaults,
        )
        self._scheduler.add_job(
            self.run_market_broadcast,
            IntervalTrigger(seconds=self._config.MARKET_BROADCAST_INTERVAL_SECONDS),
            id="market_broadcast",
            name="Broadcast market data to subscribers",
            **defaults,
        )
        self._scheduler.add_job(
            self.run_expire_alerts,
            CronTrigger(hour=self._config.EXPIRY_SWEEP_HOUR, minute=0, timezone="UTC"),
            id="expire_alerts",
            name="Deactivate expired alerts daily",
            **defaults,
        )
        self._scheduler.add_job(
            self.run_clear_cache,
            CronTrigger(minute=0, timezone="UTC"),
            id="clear_cache",
            name="Clear market data cache hourly",
            **defaults,
        )
        if self._tracked:
            self._scheduler.add_job(
                self.run_prefetch,
                IntervalTrigger(seconds=self._config.PREFETCH_INTERVAL_SECONDS),
                id="prefetch_market_data",
                name="Warm cache for tracked symbols",
                **defaults,
            )

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def jobs(self) -> List[Job]:
        return self._scheduler.get_jobs()

    def start(self) -> None:
        self._scheduler.start()
        logger.info(f"Scheduler started with jobs: {[job.id for job in self.jobs()]}")

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    async def run_alert_check(self) -> None:
        try:
            await self._engine.run_cycle()
        except Exception as e:
            logger.error(f"Alert check job failed: {e}")

    async def run_market_broadcast(self) -> None:
        try:
            await self._broadcast.broadcast_market_data()
        except Exception as e:
            logger.error(f"Market broadcast job failed: {e}")

    async def run_expire_alerts(self) -> None:
        try:
            self._alerts.expire_alerts()
        except Exception as e:
            logger.error(f"Alert expiry job failed: {e}")

    async def run_clear_cache(self) -> None:
        try:
            self._market_data.clear_cache()
        except Exception as e:
            logger.error(f"Cache clear job failed: {e}")

    async def run_prefetch(self) -> None:
        try:
            batch = await self._market_data.get_batch(self._tracked)
            fetched = sum(1 for result in batch.values() if result.ok)
            logger.info(f"Prefetched {fetched}/{len(batch)} tracked symbols")
        except Exception as e:
            logger.error(f"Prefetch job failed: {e}")
