"""
Queue handle: the producer side of one named queue in the broker store.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hookrelay.db.connection import session_scope
from hookrelay.db.models import WebhookJob
from hookrelay.db.repository import JobRepository

logger = logging.getLogger(__name__)


class JobQueue:
    """
    Enqueue side of a named queue.

    Jobs are stored durably; consumption happens in the queue's worker,
    possibly in another process.
    """

    def __init__(
        self,
        name: str,
        session_factory: async_sessionmaker[AsyncSession],
        backoff_base_ms: int,
    ):
        self.name = name
        self.backoff_base_ms = backoff_base_ms
        self._session_factory = session_factory

    async def add(
        self,
        destination: str,
        body: str,
        content_type: str,
        timeout_ms: int,
        error_callback: str | None = None,
        delay_ms: int = 0,
        attempts: int = 1,
        deduplication_id: str | None = None,
    ) -> tuple[WebhookJob, bool]:
        """
        Enqueue a delivery job.

        Args:
            destination: Target URL.
            body: Request body.
            content_type: Content-Type header value.
            timeout_ms: Per-attempt timeout.
            error_callback: URL notified on terminal failure.
            delay_ms: Delay before the job becomes eligible.
            attempts: Total attempts, first one included.
            deduplication_id: Identity suppressing pending duplicates.

        Returns:
            Tuple of (job, created); see ``JobRepository.enqueue``.
        """
        async with session_scope(self._session_factory) as session:
            repo = JobRepository(session)
            return await repo.enqueue(
                queue_name=self.name,
                destination=destination,
                body=body,
                content_type=content_type,
                timeout_ms=timeout_ms,
                error_callback=error_callback,
                delay_ms=delay_ms,
                max_attempts=attempts,
                backoff_base_ms=self.backoff_base_ms,
                deduplication_id=deduplication_id,
            )

    async def save_concurrency(self, concurrency: int) -> None:
        """Persist the queue's latest concurrency for out-of-process workers."""
        async with session_scope(self._session_factory) as session:
            await JobRepository(session).upsert_queue(self.name, concurrency)

    async def counts(self) -> dict[str, int]:
        """Job counts of this queue by status."""
        async with session_scope(self._session_factory) as session:
            return await JobRepository(session).get_job_stats(queue_name=self.name)

    def __repr__(self) -> str:
        return f"JobQueue(name={self.name})"
