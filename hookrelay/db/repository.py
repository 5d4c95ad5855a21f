"""
Job repository for broker store operations.
Implements enqueue with deduplication, leasing, acknowledgement and retry
scheduling for webhook jobs.
"""

import logging
from datetime import timedelta
from typing import Any, Sequence
from uuid import UUID, uuid4

from sqlalchemy import and_, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from hookrelay.constants import PENDING_STATUSES, JobStatus
from hookrelay.db.models import WebhookJob, WebhookQueue, utcnow

logger = logging.getLogger(__name__)


def compute_backoff_ms(backoff_base_ms: int, attempt: int) -> int:
    """
    Exponential backoff before the retry that follows ``attempt``.

    Args:
        backoff_base_ms: Delay after the first failed attempt.
        attempt: Number of the attempt that just failed (1-based).

    Returns:
        Delay in milliseconds: ``base * 2 ** (attempt - 1)``.
    """
    return backoff_base_ms * 2 ** max(0, attempt - 1)


class JobRepository:
    """
    Repository for broker store operations.

    Implements atomic operations for:
    - Job enqueue coalescing onto active duplicates
    - Lease acquisition with FOR UPDATE SKIP LOCKED
    - Status transitions, retry backoff and terminal failure
    - Lease heartbeat and expiry handling
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
        """
        self._session = session

    def _insert(self, table: Any):
        """Dialect-specific INSERT supporting ON CONFLICT clauses."""
        if self._session.bind.dialect.name == "sqlite":
            return sqlite.insert(table)
        return postgresql.insert(table)

    async def upsert_queue(self, name: str, concurrency: int) -> None:
        """
        Create the queue row or overwrite its concurrency.

        Args:
            name: Queue name.
            concurrency: Latest parallelism submitted for the queue.
        """
        now = utcnow()
        stmt = self._insert(WebhookQueue).values(
            name=name,
            concurrency=concurrency,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[WebhookQueue.name],
            set_={"concurrency": concurrency, "updated_at": now},
        )
        await self._session.execute(stmt)

    async def get_queue(self, name: str) -> WebhookQueue | None:
        """Get a queue row by name."""
        stmt = (
            select(WebhookQueue)
            .where(WebhookQueue.name == name)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_queues(self) -> Sequence[WebhookQueue]:
        """List all known queues ordered by name."""
        stmt = (
            select(WebhookQueue)
            .order_by(WebhookQueue.name)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def enqueue(
        self,
        queue_name: str,
        destination: str,
        body: str,
        content_type: str,
        timeout_ms: int,
        error_callback: str | None = None,
        delay_ms: int = 0,
        max_attempts: int = 1,
        backoff_base_ms: int = 1000,
        deduplication_id: str | None = None,
    ) -> tuple[WebhookJob, bool]:
        """
        Add a job to a queue.

        Uses INSERT ... ON CONFLICT DO NOTHING on (queue_name, dedup_key) so a
        job whose dedup id is still active in the queue is not duplicated.

        Returns:
            Tuple of (job, created). When created is False the returned job
            is the active duplicate the submission coalesced onto.
        """
        now = utcnow()
        job_id = uuid4()
        stmt = self._insert(WebhookJob).values(
            id=job_id,
            queue_name=queue_name,
            destination=destination,
            body=body,
            content_type=content_type,
            error_callback=error_callback,
            timeout_ms=timeout_ms,
            delay_ms=delay_ms,
            deduplication_id=deduplication_id,
            dedup_key=deduplication_id,
            status=JobStatus.DELAYED if delay_ms > 0 else JobStatus.QUEUED,
            attempt=0,
            max_attempts=max_attempts,
            backoff_base_ms=backoff_base_ms,
            scheduled_at=now + timedelta(milliseconds=delay_ms),
            created_at=now,
            updated_at=now,
        ).on_conflict_do_nothing(
            index_elements=["queue_name", "dedup_key"]
        ).returning(WebhookJob.id)

        result = await self._session.execute(stmt)

        if result.scalar_one_or_none() is not None:
            job = await self.get_job(job_id)
            if job is None:
                raise RuntimeError("Job should exist after insert")
            logger.info(
                "Enqueued job",
                extra={"job_id": str(job_id), "queue_name": queue_name},
            )
            return job, True

        if deduplication_id is None:
            raise RuntimeError("Insert without dedup id should not conflict")

        existing = await self.get_active_duplicate(queue_name, deduplication_id)
        if existing is None:
            # The duplicate was leased in between; its id is free again
            return await self.enqueue(
                queue_name=queue_name,
                destination=destination,
                body=body,
                content_type=content_type,
                timeout_ms=timeout_ms,
                error_callback=error_callback,
                delay_ms=delay_ms,
                max_attempts=max_attempts,
                backoff_base_ms=backoff_base_ms,
                deduplication_id=deduplication_id,
            )

        logger.info(
            "Coalesced onto pending duplicate",
            extra={
                "job_id": str(existing.id),
                "queue_name": queue_name,
                "deduplication_id": deduplication_id,
            },
        )
        return existing, False

    async def get_job(self, job_id: UUID) -> WebhookJob | None:
        """
        Get a job by ID.

        Args:
            job_id: The job UUID.

        Returns:
            The job or None if not found.
        """
        stmt = (
            select(WebhookJob)
            .where(WebhookJob.id == job_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_active_duplicate(
        self,
        queue_name: str,
        deduplication_id: str | None,
    ) -> WebhookJob | None:
        """Get the pending or delayed job holding a dedup id in a queue."""
        if deduplication_id is None:
            return None
        stmt = (
            select(WebhookJob)
            .where(
                and_(
                    WebhookJob.queue_name == queue_name,
                    WebhookJob.dedup_key == deduplication_id,
                )
            )
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def acquire_lease(
        self,
        queue_name: str,
        worker_id: str,
        limit: int,
        lease_seconds: int,
    ) -> Sequence[WebhookJob]:
        """
        Lease eligible jobs of one queue and mark them running.

        Candidates are selected oldest-scheduled first with FOR UPDATE SKIP
        LOCKED (ignored by SQLite). Each lease is a conditional update, so a
        job claimed concurrently by another worker is skipped.

        Args:
            queue_name: The queue to take jobs from.
            worker_id: The worker identifier recorded as lease owner.
            limit: Maximum number of jobs to lease.
            lease_seconds: Lease duration before the reaper may reclaim.

        Returns:
            The leased jobs, attempt counter already incremented.
        """
        if limit <= 0:
            return []

        now = utcnow()
        candidates = (
            select(WebhookJob.id)
            .where(
                and_(
                    WebhookJob.queue_name == queue_name,
                    WebhookJob.status.in_(PENDING_STATUSES),
                    WebhookJob.scheduled_at <= now,
                )
            )
            .order_by(WebhookJob.scheduled_at.asc(), WebhookJob.created_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        result = await self._session.execute(candidates)
        job_ids = list(result.scalars().all())

        leased: list[UUID] = []
        for job_id in job_ids:
            stmt = (
                update(WebhookJob)
                .where(
                    and_(
                        WebhookJob.id == job_id,
                        WebhookJob.status.in_(PENDING_STATUSES),
                    )
                )
                .values(
                    status=JobStatus.RUNNING,
                    attempt=WebhookJob.attempt + 1,
                    dedup_key=None,
                    lease_owner=worker_id,
                    lease_expires_at=now + timedelta(seconds=lease_seconds),
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            updated = await self._session.execute(stmt)
            if updated.rowcount == 1:
                leased.append(job_id)

        if not leased:
            return []

        logger.debug(
            f"Acquired lease on {len(leased)} jobs",
            extra={"worker_id": worker_id, "queue_name": queue_name},
        )

        stmt = (
            select(WebhookJob)
            .where(WebhookJob.id.in_(leased))
            .order_by(WebhookJob.scheduled_at.asc(), WebhookJob.created_at.asc())
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def complete_job(self, job_id: UUID, worker_id: str) -> WebhookJob | None:
        """
        Mark job as completed.

        Args:
            job_id: The job UUID.
            worker_id: The worker identifier (must match lease owner).

        Returns:
            Updated job or None if the worker no longer owns the lease.
        """
        now = utcnow()
        stmt = (
            update(WebhookJob)
            .where(
                and_(
                    WebhookJob.id == job_id,
                    WebhookJob.status == JobStatus.RUNNING,
                    WebhookJob.lease_owner == worker_id,
                )
            )
            .values(
                status=JobStatus.COMPLETED,
                completed_at=now,
                updated_at=now,
                lease_owner=None,
                lease_expires_at=None,
                last_error=None,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            return None
        return await self.get_job(job_id)

    async def fail_job(
        self,
        job_id: UUID,
        worker_id: str,
        error: str,
    ) -> WebhookJob | None:
        """
        Handle a failed attempt. Either schedule a retry or fail terminally.

        Retries are delayed by ``compute_backoff_ms`` and go back to the
        DELAYED state without re-activating the dedup id.

        Args:
            job_id: The job UUID.
            worker_id: The worker identifier.
            error: Error message of the attempt.

        Returns:
            Updated job or None if the worker no longer owns the lease.
        """
        job = await self.get_job(job_id)
        if job is None:
            return None

        if job.lease_owner != worker_id or job.status != JobStatus.RUNNING:
            logger.warning(
                "Worker doesn't own job lease",
                extra={"job_id": str(job_id), "worker_id": worker_id},
            )
            return None

        now = utcnow()
        values: dict[str, Any] = {
            "last_error": error,
            "updated_at": now,
            "lease_owner": None,
            "lease_expires_at": None,
        }

        if job.is_retryable:
            delay_ms = compute_backoff_ms(job.backoff_base_ms, job.attempt)
            values["status"] = JobStatus.DELAYED
            values["scheduled_at"] = now + timedelta(milliseconds=delay_ms)
            logger.info(
                "Job scheduled for retry",
                extra={
                    "job_id": str(job_id),
                    "attempt": job.attempt,
                    "backoff_ms": delay_ms,
                },
            )
        else:
            values["status"] = JobStatus.FAILED
            values["completed_at"] = now
            logger.warning(
                f"Job failed after {job.attempt} attempts",
                extra={"job_id": str(job_id), "error": error},
            )

        stmt = (
            update(WebhookJob)
            .where(
                and_(
                    WebhookJob.id == job_id,
                    WebhookJob.status == JobStatus.RUNNING,
                    WebhookJob.lease_owner == worker_id,
                )
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            return None
        return await self.get_job(job_id)

    async def extend_lease(
        self,
        job_id: UUID,
        worker_id: str,
        extension_seconds: int,
    ) -> bool:
        """
        Extend the lease on a running job (heartbeat).

        Returns:
            True if lease was extended, False otherwise.
        """
        now = utcnow()
        stmt = (
            update(WebhookJob)
            .where(
                and_(
                    WebhookJob.id == job_id,
                    WebhookJob.lease_owner == worker_id,
                    WebhookJob.status == JobStatus.RUNNING,
                )
            )
            .values(
                lease_expires_at=now + timedelta(seconds=extension_seconds),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def recover_expired_leases(self) -> int:
        """
        Recover running jobs whose lease expired (crashed worker).

        Jobs with attempts left return to QUEUED; the others fail
        terminally, since the lost attempt already counted.

        Returns:
            Number of recovered jobs.
        """
        now = utcnow()
        expired = and_(
            WebhookJob.status == JobStatus.RUNNING,
            WebhookJob.lease_expires_at < now,
        )
        released = {
            "lease_owner": None,
            "lease_expires_at": None,
            "updated_at": now,
        }

        requeue = (
            update(WebhookJob)
            .where(and_(expired, WebhookJob.attempt < WebhookJob.max_attempts))
            .values(status=JobStatus.QUEUED, scheduled_at=now, **released)
            .execution_options(synchronize_session=False)
        )
        exhaust = (
            update(WebhookJob)
            .where(and_(expired, WebhookJob.attempt >= WebhookJob.max_attempts))
            .values(
                status=JobStatus.FAILED,
                completed_at=now,
                last_error="Lease expired",
                **released,
            )
            .execution_options(synchronize_session=False)
        )

        count = (await self._session.execute(requeue)).rowcount
        count += (await self._session.execute(exhaust)).rowcount

        if count > 0:
            logger.info(f"Recovered {count} jobs with expired leases")

        return count

    async def get_job_stats(self, queue_name: str | None = None) -> dict[str, int]:
        """
        Get job counts by status.

        Args:
            queue_name: Optional queue filter.

        Returns:
            Dictionary of status -> count.
        """
        stmt = select(WebhookJob.status, func.count()).group_by(WebhookJob.status)
        if queue_name is not None:
            stmt = stmt.where(WebhookJob.queue_name == queue_name)

        result = await self._session.execute(stmt)
        return {status.value: count for status, count in result.all()}
