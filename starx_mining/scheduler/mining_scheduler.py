"""
Periodic mining credit scheduler.

This service provides:
- Mining credit batches every SCHEDULER_INTERVAL seconds
- Manual runs for the HTTP trigger, refused while a batch is in progress
- Run statistics and health checks
"""

import asyncio
from datetime import datetime, timezone, timedelta
from typing import Dict, Any, Optional
from dataclasses import dataclass
from enum import Enum
import structlog

from starx_mining.core.config import settings
from starx_mining.core.exceptions import JobAlreadyRunningError
from starx_mining.services.mining.core import MiningJobRunner, JobStats
from starx_mining.services.mining_processor import get_mining_job_runner


logger = structlog.get_logger(__name__)


class SchedulerStatus(Enum):
    """Status of the mining scheduler."""
    STOPPED = "stopped"
    WAITING = "waiting"
    PROCESSING = "processing"
    ERROR = "error"


@dataclass
class SchedulerStats:
    """Statistics for scheduler operations."""
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    last_processing_stats: Optional[JobStats] = None
    uptime_start: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "total_runs": self.total_runs,
            "successful_runs": self.successful_runs,
            "failed_runs": self.failed_runs,
            "last_processing_stats": (
                self.last_processing_stats.to_dict() if self.last_processing_stats else None
            ),
            "uptime_start": self.uptime_start.isoformat() if self.uptime_start else None,
        }


class MiningScheduler:
    """
    Runs the mining job on a fixed interval and on demand.

    A run that finishes with failed or conflicting users still counts as a
    completed run but not as a successful one.
    """

    def __init__(
        self,
        runner: MiningJobRunner,
        interval_seconds: Optional[int] = None,
        enabled: Optional[bool] = None,
    ):
        self.logger = logger.bind(service="mining_scheduler")

        self.runner = runner
        self.enabled = settings.scheduler_enabled if enabled is None else enabled
        self.interval_seconds = interval_seconds or settings.scheduler_interval

        self.status = SchedulerStatus.STOPPED
        self.stats = SchedulerStats(uptime_start=datetime.now(timezone.utc))
        self._should_stop = False
        self._scheduler_task: Optional[asyncio.Task] = None
        self._run_lock = asyncio.Lock()

        self.logger.info(
            "Mining scheduler initialized",
            enabled=self.enabled,
            interval_seconds=self.interval_seconds
        )

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def start(self):
        """Start the periodic loop."""
        if not self.enabled:
            self.logger.info("Mining scheduler is disabled")
            return

        if self.status != SchedulerStatus.STOPPED:
            self.logger.warning("Scheduler already running", current_status=self.status.value)
            return

        self._should_stop = False
        self.status = SchedulerStatus.WAITING
        self.stats.next_run = datetime.now(timezone.utc)
        self._scheduler_task = asyncio.create_task(self._scheduler_loop())

        self.logger.info("Mining scheduler started", interval_seconds=self.interval_seconds)

    async def stop(self):
        """Stop the periodic loop, cancelling an in-flight batch."""
        if self.status == SchedulerStatus.STOPPED:
            return

        self.logger.info("Stopping mining scheduler")
        self._should_stop = True

        if self._scheduler_task and not self._scheduler_task.done():
            self._scheduler_task.cancel()
            try:
                await self._scheduler_task
            except asyncio.CancelledError:
                pass

        self._scheduler_task = None
        self.status = SchedulerStatus.STOPPED
        self.logger.info("Mining scheduler stopped")

    async def _scheduler_loop(self):
        """Main scheduler loop."""
        self.logger.info("Scheduler loop started")

        while not self._should_stop:
            try:
                await self._run_once(triggered_by="scheduler")
            except JobAlreadyRunningError:
                self.logger.info("Skipping scheduled run, a batch is already in progress")
            except asyncio.CancelledError:
                self.logger.info("Scheduler loop cancelled")
                raise
            except Exception as e:
                self.logger.error("Error in scheduler loop", error=str(e))

            self.stats.next_run = datetime.now(timezone.utc) + timedelta(seconds=self.interval_seconds)
            await asyncio.sleep(self.interval_seconds)

        self.logger.info("Scheduler loop stopped")

    async def _run_once(self, triggered_by: str) -> JobStats:
        if self._run_lock.locked():
            raise JobAlreadyRunningError()

        async with self._run_lock:
            previous_status = self.status
            self.status = SchedulerStatus.PROCESSING
            self.stats.total_runs += 1
            self.logger.info("Mining batch triggered", triggered_by=triggered_by)

            try:
                processing_stats = await self.runner.run_exclusive()
            except Exception:
                self.stats.failed_runs += 1
                self.status = SchedulerStatus.ERROR
                raise

            self.stats.last_run = datetime.now(timezone.utc)
            self.stats.last_processing_stats = processing_stats
            if processing_stats.succeeded:
                self.stats.successful_runs += 1
            else:
                self.stats.failed_runs += 1
                self.logger.warning(
                    "Some users failed mining processing",
                    failed=processing_stats.failed,
                    conflicts=processing_stats.conflicts,
                    first_error=processing_stats.first_error
                )

            self.status = (
                previous_status if previous_status != SchedulerStatus.ERROR else SchedulerStatus.WAITING
            )
            return processing_stats

    async def trigger_manual_run(self) -> JobStats:
        """
        Run one batch now (HTTP trigger, admin tools).

        Raises:
            JobAlreadyRunningError: a batch is already in progress
        """
        self.logger.info("Manual mining run triggered")
        return await self._run_once(triggered_by="manual")

    async def health_check(self) -> Dict[str, Any]:
        """Perform health check."""
        uptime_seconds = (datetime.now(timezone.utc) - self.stats.uptime_start).total_seconds()
        store_healthy = await self.runner.store.health_check()

        return {
            "healthy": store_healthy and self.status != SchedulerStatus.ERROR,
            "status": self.status.value,
            "enabled": self.enabled,
            "uptime_seconds": uptime_seconds,
            "store_healthy": store_healthy,
            "scheduler_stats": self.stats.to_dict(),
            "runner_status": self.runner.get_status(),
        }

    def get_status(self) -> Dict[str, Any]:
        """Get current scheduler status."""
        return {
            "status": self.status.value,
            "enabled": self.enabled,
            "interval_seconds": self.interval_seconds,
            "stats": self.stats.to_dict(),
        }


# Global scheduler instance
_mining_scheduler: Optional[MiningScheduler] = None


async def get_mining_scheduler() -> MiningScheduler:
    """Get or create global MiningScheduler instance."""
    global _mining_scheduler
    if _mining_scheduler is None:
        _mining_scheduler = MiningScheduler(await get_mining_job_runner())
    return _mining_scheduler


async def shutdown_mining_scheduler():
    """Stop and drop the global scheduler."""
    global _mining_scheduler
    if _mining_scheduler:
        await _mining_scheduler.stop()
        _mining_scheduler = None


async def trigger_manual_mining() -> JobStats:
    """Trigger a manual mining batch."""
    scheduler = await get_mining_scheduler()
    return await scheduler.trigger_manual_run()
