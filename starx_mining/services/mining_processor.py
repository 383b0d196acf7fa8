"""
Mining job wiring.

Builds the store, time source and job runner selected by settings and keeps
one global instance of each for the API and the scheduler.
"""

from typing import Optional

from starx_mining.core.config import settings
from .mining.core import MiningJobRunner, JobStats
from .mining.database import UserStore, InMemoryUserStore, SqlUserStore
from .mining.time_source import TimeSource, DatabaseTimeSource, SystemTimeSource

__all__ = [
    "get_user_store",
    "get_time_source",
    "get_mining_job_runner",
    "run_mining_job",
    "reset_mining_services",
]

_user_store: Optional[UserStore] = None
_time_source: Optional[TimeSource] = None
_mining_job_runner: Optional[MiningJobRunner] = None


def get_user_store() -> UserStore:
    """Get or create the global user store."""
    global _user_store
    if _user_store is None:
        if settings.store_backend == "memory":
            _user_store = InMemoryUserStore()
        else:
            _user_store = SqlUserStore()
    return _user_store


def get_time_source() -> TimeSource:
    """Get or create the global batch clock."""
    global _time_source
    if _time_source is None:
        if settings.time_source == "system" or settings.store_backend == "memory":
            _time_source = SystemTimeSource()
        else:
            _time_source = DatabaseTimeSource()
    return _time_source


async def get_mining_job_runner() -> MiningJobRunner:
    """Get or create the global MiningJobRunner instance."""
    global _mining_job_runner
    if _mining_job_runner is None:
        _mining_job_runner = MiningJobRunner(
            store=get_user_store(),
            time_source=get_time_source(),
            max_concurrency=settings.job_max_concurrency,
            cas_max_retries=settings.job_cas_max_retries,
        )
    return _mining_job_runner


async def run_mining_job() -> JobStats:
    """
    Convenience function to run one mining batch.

    Returns:
        JobStats with processing results
    """
    runner = await get_mining_job_runner()
    return await runner.run_exclusive()


def reset_mining_services() -> None:
    """Drop the global instances so the next call rebuilds them from settings."""
    global _user_store, _time_source, _mining_job_runner
    _user_store = None
    _time_source = None
    _mining_job_runner = None
