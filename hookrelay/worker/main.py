"""
Standalone worker process.

Runs queue workers outside the API process. Queues are discovered from the
broker store, and each worker follows the concurrency persisted by the
latest submission to its queue.
"""

import asyncio
import logging
import signal

from hookrelay.config import get_settings
from hookrelay.db import close_db, init_db, session_scope
from hookrelay.db.repository import JobRepository
from hookrelay.dispatch.registry import DispatchContext
from hookrelay.observability.logging import setup_logging
from hookrelay.observability.tracing import setup_tracing

logger = logging.getLogger(__name__)


class WorkerSupervisor:
    """
    Keeps one running QueueWorker per known queue.

    Periodically:
    1. Lists the queues recorded in the broker store
    2. Ensures a worker exists for each of them
    3. Applies the persisted concurrency to each worker
    """

    def __init__(self, context: DispatchContext, interval_seconds: float | None = None):
        """
        Args:
            context: Dispatch context whose registry starts workers.
            interval_seconds: Seconds between queue discovery runs.
        """
        settings = get_settings()
        self.context = context
        self.interval = interval_seconds or settings.worker_queue_discovery_interval_seconds
        self._running = False
        self._stopped = asyncio.Event()

    async def start(self) -> None:
        """Run queue discovery until stopped, then stop all workers."""
        logger.info(f"Worker supervisor starting with interval {self.interval}s")
        self._running = True

        while self._running:
            try:
                await self.sync_queues()
            except Exception as e:
                logger.exception(f"Error in queue discovery: {e}")

            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval)
            except TimeoutError:
                pass

        await self.context.registry.close()
        logger.info("Worker supervisor stopped")

    async def stop(self) -> None:
        """Stop the supervisor."""
        logger.info("Worker supervisor stopping")
        self._running = False
        self._stopped.set()

    async def sync_queues(self) -> int:
        """
        Ensure workers for all persisted queues and sync their concurrency.

        Returns:
            Number of queues known.
        """
        async with session_scope(self.context.session_factory) as session:
            queues = await JobRepository(session).list_queues()

        for queue in queues:
            _, worker = await self.context.registry.ensure(queue.name)
            if worker.concurrency != queue.concurrency:
                logger.info(
                    "Queue concurrency changed",
                    extra={"queue_name": queue.name, "concurrency": queue.concurrency},
                )
                worker.concurrency = queue.concurrency

        return len(queues)


async def run_async() -> None:
    """Run the worker process asynchronously."""
    setup_logging()
    setup_tracing()
    session_factory = await init_db()

    context = DispatchContext.create(session_factory)
    supervisor = WorkerSupervisor(context)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(supervisor.stop())
        )

    try:
        await supervisor.start()
    finally:
        await context.client.aclose()
        await close_db()


def run() -> None:
    """Run the worker process."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
