"""
Trusted clocks for mining jobs.

A job reads the time exactly once and credits every user against that single
value, so all users of a batch share one consistent "now".
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import func, select

from starx_mining.core.database import get_async_session
from starx_mining.core.exceptions import TimeUnavailableError


logger = structlog.get_logger(__name__)


def to_epoch_ms(moment: datetime) -> int:
    """Convert a datetime to epoch milliseconds, treating naive values as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


class TimeSource(ABC):
    """Source of the authoritative batch timestamp."""

    @abstractmethod
    async def now(self) -> int:
        """
        Return the current time in epoch milliseconds.

        Raises:
            TimeUnavailableError: if no trusted time can be produced
        """


class SystemTimeSource(TimeSource):
    """Host UTC clock."""

    async def now(self) -> int:
        return to_epoch_ms(datetime.now(timezone.utc))


class DatabaseTimeSource(TimeSource):
    """Database server clock, shared by every process writing to the store."""

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or get_async_session
        self.logger = logger.bind(service="database_time_source")

    async def now(self) -> int:
        try:
            async with self.session_factory() as db:
                server_time: Optional[datetime] = (await db.execute(select(func.now()))).scalar_one()
        except Exception as e:
            self.logger.error("Failed to read database server time", error=str(e))
            raise TimeUnavailableError("Database server time unavailable", {"error": str(e)}) from e

        if server_time is None:
            raise TimeUnavailableError("Database returned no server time")

        return to_epoch_ms(server_time)
