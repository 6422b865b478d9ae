"""
APScheduler Configuration for the Expiry Sweeper

Periodically evicts pending purchases whose customers never came back from
Webpay. Purely housekeeping: a purchase older than the TTL is removed whether
or not the sweep runs exactly on time.

Jobs are kept in memory; pending purchases do not survive a restart either.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.executors.asyncio import AsyncIOExecutor

from .session_store import PendingPurchaseStore

logger = logging.getLogger(__name__)


SWEEP_JOB_ID = "pending_purchase_sweep"


class ExpirySweeper:
    """
    Recurring eviction of expired pending purchases.

    Owned by the application lifespan alongside the store it sweeps.
    """

    def __init__(
        self,
        store: PendingPurchaseStore,
        ttl: timedelta = timedelta(minutes=30),
        interval: timedelta = timedelta(minutes=30),
    ):
        self.store = store
        self.ttl = ttl
        self.interval = interval
        self._scheduler: Optional[AsyncIOScheduler] = None

    def _initialize_scheduler(self) -> AsyncIOScheduler:
        """
        Configure APScheduler.

        Configuration:
        - AsyncIOScheduler so the sweep runs on the application event loop
        - MemoryJobStore (nothing to persist)
        - Coalesce: True (missed runs collapse into one)
        - Max instances: 1 (sweeps never overlap)
        """
        scheduler = AsyncIOScheduler(
            jobstores={'default': MemoryJobStore()},
            executors={'default': AsyncIOExecutor()},
            job_defaults={
                'coalesce': True,
                'max_instances': 1,
                'misfire_grace_time': 60
            },
            timezone='UTC'
        )

        scheduler.add_job(
            self._sweep_job,
            trigger=IntervalTrigger(seconds=self.interval.total_seconds()),
            id=SWEEP_JOB_ID,
            name="Sweep expired pending purchases",
            replace_existing=True,
        )
        return scheduler

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        """
        Start the sweep schedule.

        Must be called from within the running event loop (FastAPI lifespan).
        """
        if self.running:
            logger.warning("Expiry sweeper already running")
            return

        self._scheduler = self._initialize_scheduler()
        self._scheduler.start()

        next_run = self._scheduler.get_job(SWEEP_JOB_ID).next_run_time
        logger.info(
            f"Expiry sweeper started: ttl={self.ttl}, interval={self.interval}, next_run={next_run}"
        )

    def shutdown(self, wait: bool = True) -> None:
        """
        Stop the sweep schedule.

        Args:
            wait: Wait for a running sweep to complete
        """
        if self.running:
            self._scheduler.shutdown(wait=wait)
            logger.info(f"Expiry sweeper shutdown (wait={wait})")
        self._scheduler = None

    def run_once(self, now: Optional[datetime] = None) -> int:
        """
        Evict expired pending purchases now.

        Args:
            now: Reference time, defaults to the current UTC time

        Returns:
            Number of purchases removed
        """
        removed = self.store.sweep_expired(now or datetime.now(timezone.utc), self.ttl)
        if removed:
            logger.info(f"Cleaned up {removed} expired transaction records")
        return removed

    async def _sweep_job(self) -> None:
        try:
            self.run_once()
        except Exception as e:
            logger.error(f"Expiry sweep failed: {e}", exc_info=True)
