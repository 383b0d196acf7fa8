"""
Mining job runner: credits every user against one trusted batch time.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import structlog

from starx_mining.core.exceptions import StoreError, JobAlreadyRunningError
from ..database.base import UserStore
from ..time_source import TimeSource
from .accrual import AccrualEngine
from .referrals import ReferralCounter
from .types import (
    JobStats,
    ProcessorStatus,
    UserOutcome,
    UserProcessingResult,
    UserRecord,
)


logger = structlog.get_logger(__name__)


class MiningJobRunner:
    """
    Batch mining credit job.

    Architecture:
    1. Read one "now" from the time source (failure aborts before any read)
    2. Load every user record from the store
    3. Fan out one task per user through a bounded worker pool
    4. Each task computes its accrual and writes it with a conditional
       update keyed on the ``lastUpdate`` it read; on conflict the user is
       re-read and recomputed against the same batch time
    5. Per-user outcomes are collected as values, so one failing user never
       blocks the credits of the others
    """

    def __init__(
        self,
        store: UserStore,
        time_source: TimeSource,
        max_concurrency: int = 50,
        cas_max_retries: int = 3,
        engine: Optional[AccrualEngine] = None,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if cas_max_retries < 0:
            raise ValueError("cas_max_retries cannot be negative")

        self.logger = logger.bind(service="mining_job_runner")

        self.store = store
        self.time_source = time_source
        self.max_concurrency = max_concurrency
        self.cas_max_retries = cas_max_retries
        self.engine = engine or AccrualEngine(ReferralCounter(store))

        self.status = ProcessorStatus.IDLE
        self.last_stats: Optional[JobStats] = None

    async def run(self) -> JobStats:
        """
        Run one batch over all users.

        Returns:
            JobStats with per-outcome counts

        Raises:
            TimeUnavailableError: no trusted time, nothing was touched
            StoreUnavailableError: the user collection could not be read
        """
        stats = JobStats(start_time=datetime.now(timezone.utc))
        self.status = ProcessorStatus.RUNNING

        try:
            now = await self.time_source.now()
            stats.batch_now = now

            users = await self.store.get_all()
            stats.total_users = len(users)

            if not users:
                self.logger.info("No users found", batch_now=now)
                return self._finish(stats)

            self.logger.info(
                "Starting mining job",
                batch_now=now,
                total_users=len(users),
                max_concurrency=self.max_concurrency
            )

            semaphore = asyncio.Semaphore(self.max_concurrency)

            async def bounded(user_id: str, data: Any) -> UserProcessingResult:
                async with semaphore:
                    return await self.process_user(user_id, data, now)

            results = await asyncio.gather(
                *(bounded(user_id, data) for user_id, data in users.items())
            )

            for result in results:
                stats.record(result)

            return self._finish(stats)

        except Exception as e:
            stats.first_error = f"{type(e).__name__}: {e}"
            self._finish(stats, completed=False)
            self.logger.error(
                "Mining job failed",
                error=str(e),
                total_time=f"{stats.total_processing_time:.2f}s"
            )
            raise
        finally:
            self.status = ProcessorStatus.IDLE

    async def run_exclusive(self) -> JobStats:
        """Run a batch unless this runner is already running one."""
        if self.status is ProcessorStatus.RUNNING:
            raise JobAlreadyRunningError()
        return await self.run()

    async def process_user(self, user_id: str, data: Any, now: int) -> UserProcessingResult:
        """Credit one user and persist the result; failures come back as FAILED, never raised."""
        record = UserRecord.from_mapping(user_id, data)
        attempts = 0

        try:
            while True:
                accrual = await self.engine.evaluate(record, now)
                if accrual is None:
                    return UserProcessingResult(user_id, UserOutcome.SKIPPED, attempts=attempts)

                attempts += 1
                applied = await self.store.compare_and_update(
                    user_id,
                    accrual.expected_last_update,
                    accrual.to_update_fields()
                )

                if applied:
                    self.engine.log_credit(accrual)
                    return UserProcessingResult(
                        user_id, UserOutcome.CREDITED, accrual=accrual, attempts=attempts
                    )

                if attempts > self.cas_max_retries:
                    self.logger.warning(
                        "Giving up on user after repeated write conflicts",
                        user_id=user_id,
                        attempts=attempts
                    )
                    return UserProcessingResult(
                        user_id,
                        UserOutcome.CONFLICT,
                        error=f"write conflict after {attempts} attempts",
                        attempts=attempts
                    )

                self.logger.info("Write conflict, re-reading user", user_id=user_id, attempt=attempts)
                fresh = await self.store.get(user_id)
                record = UserRecord.from_mapping(user_id, fresh)

        except StoreError as e:
            self.logger.error("Store failure while processing user", user_id=user_id, error=e.message)
            return UserProcessingResult(user_id, UserOutcome.FAILED, error=e.message, attempts=attempts)

        except Exception as e:
            self.logger.error(
                "Unexpected error while processing user",
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__
            )
            return UserProcessingResult(
                user_id,
                UserOutcome.FAILED,
                error=f"{type(e).__name__}: {e}",
                attempts=attempts
            )

    def _finish(self, stats: JobStats, completed: bool = True) -> JobStats:
        stats.aborted = not completed
        stats.end_time = datetime.now(timezone.utc)
        stats.total_processing_time = (stats.end_time - stats.start_time).total_seconds()
        self.last_stats = stats

        if completed:
            log = self.logger.info if stats.succeeded else self.logger.warning
            log(
                "Mining job completed",
                total_users=stats.total_users,
                credited=stats.credited,
                skipped=stats.skipped,
                failed=stats.failed,
                conflicts=stats.conflicts,
                coins_credited=round(stats.coins_credited, 5),
                total_time=f"{stats.total_processing_time:.2f}s"
            )
        return stats

    def get_status(self) -> Dict[str, Any]:
        """Get current runner status and last statistics."""
        return {
            "status": self.status.value,
            "last_stats": self.last_stats.to_dict() if self.last_stats else None,
            "config": {
                "max_concurrency": self.max_concurrency,
                "cas_max_retries": self.cas_max_retries,
            }
        }
