"""
Main entry point for the standalone scheduler service.
Runs mining credit batches on an interval without the HTTP API.
"""

import asyncio
import signal

import structlog

from starx_mining.core.config import settings
from starx_mining.core.database import init_database, close_database
from starx_mining.core.logging import setup_logging
from starx_mining.services.mining_processor import get_mining_job_runner
from .mining_scheduler import MiningScheduler

logger = structlog.get_logger(__name__)


class SchedulerMain:
    """Scheduler service coordinator."""

    def __init__(self):
        self.scheduler = None
        self._stopped = asyncio.Event()

    async def initialize(self):
        """Initialize database and scheduler."""
        logger.info("Initializing scheduler service")

        if settings.store_backend == "database":
            await init_database()

        self.scheduler = MiningScheduler(await get_mining_job_runner(), enabled=True)

        logger.info("Scheduler service initialized")

    async def start(self):
        """Start the scheduler and block until stop() is called."""
        logger.info("Starting scheduler service")
        await self.scheduler.start()
        await self._stopped.wait()

    async def stop(self):
        """Stop the scheduler service."""
        logger.info("Stopping scheduler service")

        if self.scheduler:
            await self.scheduler.stop()

        if settings.store_backend == "database":
            await close_database()

        self._stopped.set()
        logger.info("Scheduler service stopped")


async def main():
    """Main function to run the scheduler service."""
    setup_logging()

    service = SchedulerMain()
    loop = asyncio.get_running_loop()

    def request_stop(signum):
        logger.info("Received signal, shutting down", signal=signum)
        loop.create_task(service.stop())

    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, request_stop, signum)

    try:
        await service.initialize()
        await service.start()
    except Exception as e:
        logger.error("Scheduler service failed", error=str(e))
        await service.stop()
        raise


if __name__ == "__main__":
    asyncio.run(main())
