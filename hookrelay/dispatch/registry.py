"""
Queue registry and dispatch context.

The registry maps each queue name to exactly one (JobQueue, QueueWorker)
pair, created together on first use and kept for the lifetime of the
process. The dispatch context owns the registry together with the shared
broker session factory and outbound HTTP client; it is built once at process
start and passed explicitly to whoever submits jobs.
"""

import asyncio
import logging
from dataclasses import dataclass

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hookrelay.config import Settings, get_settings
from hookrelay.dispatch.queue import JobQueue
from hookrelay.worker.delivery import AttemptHandler
from hookrelay.worker.queue_worker import QueueWorker

logger = logging.getLogger(__name__)


class QueueRegistry:
    """
    Concurrency-safe mapping from queue name to its queue and worker.

    Creation of a pair is atomic per registry; the only other mutation is
    overwriting a worker's concurrency, which callers do directly.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client: httpx.AsyncClient,
        settings: Settings | None = None,
        start_workers: bool = True,
        handler: AttemptHandler | None = None,
    ):
        """
        Args:
            session_factory: Shared broker store session factory.
            client: Shared outbound HTTP client.
            settings: Settings override; defaults to the cached settings.
            start_workers: Start each worker as it is created. Disabled when
                workers run in a separate process.
            handler: Execution callback override for every worker.
        """
        self._settings = settings or get_settings()
        self._session_factory = session_factory
        self._client = client
        self._start_workers = start_workers
        self._handler = handler
        self._entries: dict[str, tuple[JobQueue, QueueWorker]] = {}
        self._lock = asyncio.Lock()

    async def ensure(self, queue_name: str) -> tuple[JobQueue, QueueWorker]:
        """
        Get the queue and worker for ``queue_name``, creating them if absent.

        An existing pair is returned unchanged, with its running attempts.
        """
        entry = self._entries.get(queue_name)
        if entry is not None:
            return entry

        async with self._lock:
            entry = self._entries.get(queue_name)
            if entry is not None:
                return entry

            queue = JobQueue(
                name=queue_name,
                session_factory=self._session_factory,
                backoff_base_ms=self._settings.broker_backoff_base_ms,
            )
            worker = QueueWorker(
                queue_name=queue_name,
                session_factory=self._session_factory,
                client=self._client,
                handler=self._handler,
            )
            if self._start_workers:
                worker.start()

            entry = (queue, worker)
            self._entries[queue_name] = entry
            logger.info("Registered queue", extra={"queue_name": queue_name})
            return entry

    def get(self, queue_name: str) -> tuple[JobQueue, QueueWorker] | None:
        """Get the pair for ``queue_name`` without creating it."""
        return self._entries.get(queue_name)

    @property
    def names(self) -> list[str]:
        return sorted(self._entries)

    def __contains__(self, queue_name: object) -> bool:
        return queue_name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    async def close(self) -> None:
        """Stop every worker, waiting for running attempts."""
        workers = [worker for _, worker in self._entries.values()]
        await asyncio.gather(*(worker.stop() for worker in workers))


@dataclass
class DispatchContext:
    """Process-wide dispatch state, built at startup and threaded through."""

    session_factory: async_sessionmaker[AsyncSession]
    client: httpx.AsyncClient
    registry: QueueRegistry

    @classmethod
    def create(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        start_workers: bool = True,
        handler: AttemptHandler | None = None,
    ) -> "DispatchContext":
        """
        Build the context around a broker session factory.

        The outbound client carries no timeout of its own; attempts bound
        themselves with the job's deadline.
        """
        settings = settings or get_settings()
        if client is None:
            client = httpx.AsyncClient(
                timeout=None,
                follow_redirects=False,
                limits=httpx.Limits(max_connections=settings.http_max_connections),
            )
        registry = QueueRegistry(
            session_factory=session_factory,
            client=client,
            settings=settings,
            start_workers=start_workers,
            handler=handler,
        )
        return cls(session_factory=session_factory, client=client, registry=registry)

    async def close(self) -> None:
        """Stop workers and release the HTTP client."""
        await self.registry.close()
        await self.client.aclose()
