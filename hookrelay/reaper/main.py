"""
Lease reaper for recovering stalled webhook jobs.

The reaper runs periodically to find running jobs whose lease expired
(the worker crashed or lost its connection mid-attempt) and returns them to
the queue. This gives at-least-once execution.
"""

import asyncio
import logging
import signal

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hookrelay.config import get_settings
from hookrelay.db import close_db, init_db, session_scope
from hookrelay.db.repository import JobRepository
from hookrelay.observability.logging import setup_logging
from hookrelay.observability.metrics import get_metrics

logger = logging.getLogger(__name__)


class Reaper:
    """
    Lease reaper that recovers expired job leases.

    Runs periodically to:
    1. Find jobs in RUNNING status with an expired lease_expires_at
    2. Return them to QUEUED, or fail them if no attempts are left
    3. Record metrics for monitoring
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        interval_seconds: int | None = None,
    ):
        """
        Initialize the reaper.

        Args:
            session_factory: Broker store session factory.
            interval_seconds: Seconds between reaper runs.
        """
        settings = get_settings()
        self.interval = interval_seconds or settings.reaper_interval_seconds
        self._session_factory = session_factory
        self._running = False
        self._metrics = get_metrics()

    async def start(self) -> None:
        """Start the reaper loop."""
        logger.info(f"Reaper starting with interval {self.interval}s")
        self._running = True

        while self._running:
            try:
                recovered = await self.run_once()

                if recovered > 0:
                    logger.info(f"Recovered {recovered} expired leases")

            except Exception as e:
                logger.exception(f"Error in reaper loop: {e}")

            await asyncio.sleep(self.interval)

        logger.info("Reaper stopped")

    async def stop(self) -> None:
        """Stop the reaper."""
        logger.info("Reaper stopping")
        self._running = False

    async def run_once(self) -> int:
        """
        Recover expired leases once (for testing or cron-style execution).

        Returns:
            Number of jobs recovered.
        """
        async with session_scope(self._session_factory) as session:
            count = await JobRepository(session).recover_expired_leases()

        if count > 0:
            self._metrics.record_lease_expired(count)

        return count


async def run_async() -> None:
    """Run the reaper asynchronously."""
    setup_logging()
    session_factory = await init_db()

    reaper = Reaper(session_factory)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(reaper.stop())
        )

    try:
        await reaper.start()
    finally:
        await close_db()


def run() -> None:
    """Run the reaper."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
