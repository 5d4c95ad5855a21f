"""
Per-queue dispatch worker.

Each queue name gets exactly one QueueWorker. It leases eligible jobs of its
queue from the broker store, runs the delivery protocol for each of them
concurrently up to its live ``concurrency`` limit, and records the outcome:
completion, a retry after backoff, or terminal failure followed by the
optional error callback.
"""

import asyncio
import logging
import os
from functools import partial
from uuid import UUID, uuid4

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hookrelay.config import get_settings
from hookrelay.constants import SPAN_DELIVER_WEBHOOK, JobStatus
from hookrelay.db.connection import session_scope
from hookrelay.db.models import WebhookJob
from hookrelay.db.repository import JobRepository
from hookrelay.observability.logging import job_log_context
from hookrelay.observability.metrics import get_metrics
from hookrelay.observability.tracing import get_tracer
from hookrelay.types.job import (
    AttemptResult,
    DeliverySuccess,
    JobContext,
    TimeoutFailure,
    TransportFailure,
)
from hookrelay.worker.delivery import AttemptHandler, deliver, notify_error_callback

logger = logging.getLogger(__name__)


def _outcome(result: AttemptResult) -> str:
    if isinstance(result, DeliverySuccess):
        return "success"
    if isinstance(result, TimeoutFailure):
        return "timeout"
    return "transport_error"


class QueueWorker:
    """
    Concurrent executor bound to one queue.

    Features:
    - Live-mutable concurrency, applied to the next dequeue
    - Heartbeat to extend leases of running attempts
    - Graceful shutdown waiting for running attempts
    """

    def __init__(
        self,
        queue_name: str,
        session_factory: async_sessionmaker[AsyncSession],
        client: httpx.AsyncClient,
        concurrency: int = 1,
        handler: AttemptHandler | None = None,
        worker_id: str | None = None,
        poll_interval: float | None = None,
    ):
        """
        Initialize the worker.

        Args:
            queue_name: The queue this worker consumes.
            session_factory: Shared broker store session factory.
            client: Shared outbound HTTP client.
            concurrency: Initial maximum number of concurrent attempts.
            handler: Execution callback for one attempt. Defaults to the
                webhook delivery protocol.
            worker_id: Lease owner identifier. Defaults to hostname + PID.
            poll_interval: Seconds between polls when the queue is idle.
        """
        settings = get_settings()

        self.queue_name = queue_name
        self.worker_id = worker_id or (
            f"{os.uname().nodename}-{os.getpid()}-{queue_name}-{uuid4().hex[:8]}"
        )
        self.poll_interval = poll_interval or settings.worker_poll_interval_seconds
        self.lease_seconds = settings.worker_lease_duration_seconds
        self.heartbeat_interval = settings.worker_heartbeat_interval_seconds

        self._session_factory = session_factory
        self._client = client
        self._handler = handler or partial(deliver, client=client)
        self._concurrency = 1
        self._running = False
        self._wake = asyncio.Event()
        self._current_jobs: dict[UUID, asyncio.Task] = {}
        self._loop_task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._metrics = get_metrics()

        self.concurrency = concurrency

    @property
    def concurrency(self) -> int:
        """Maximum number of attempts running at once."""
        return self._concurrency

    @concurrency.setter
    def concurrency(self, value: int) -> None:
        if value < 1:
            raise ValueError("concurrency must be at least 1")
        self._concurrency = value
        self._metrics.set_queue_concurrency(self.queue_name, value)
        # Let the poll loop pick up a raised limit right away
        self._wake.set()

    @property
    def in_flight(self) -> int:
        """Number of attempts currently running."""
        return len(self._current_jobs)

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start polling in the background."""
        if self._running:
            return
        logger.info(
            "Queue worker starting",
            extra={
                "queue_name": self.queue_name,
                "worker_id": self.worker_id,
                "concurrency": self._concurrency,
            },
        )
        self._running = True
        self._loop_task = asyncio.create_task(self._poll_loop())
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    async def stop(self) -> None:
        """Stop polling and wait for running attempts to finish."""
        if not self._running:
            return
        logger.info("Queue worker stopping", extra={"queue_name": self.queue_name})
        self._running = False
        self._wake.set()

        if self._loop_task:
            await self._loop_task

        if self._current_jobs:
            logger.info(f"Waiting for {len(self._current_jobs)} jobs to complete")
            await asyncio.gather(*self._current_jobs.values(), return_exceptions=True)

        if self._heartbeat_task:
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass

        logger.info("Queue worker stopped", extra={"queue_name": self.queue_name})

    async def _wait(self, timeout: float) -> None:
        """Sleep until woken (capacity or limit change) or ``timeout``."""
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=timeout)
        except TimeoutError:
            pass

    async def _poll_loop(self) -> None:
        while self._running:
            self._wake.clear()
            try:
                capacity = self._concurrency - len(self._current_jobs)
                if capacity <= 0:
                    await self._wait(self.poll_interval)
                    continue

                leased = await self._poll_and_execute(capacity)

                # A full batch suggests more work is ready
                if leased < capacity:
                    await self._wait(self.poll_interval)

            except Exception as e:
                logger.exception(
                    f"Error in worker loop: {e}",
                    extra={"queue_name": self.queue_name},
                )
                await asyncio.sleep(self.poll_interval)

    async def _poll_and_execute(self, capacity: int) -> int:
        """
        Lease up to ``capacity`` jobs and start their attempts.

        Returns:
            Number of jobs leased.
        """
        async with session_scope(self._session_factory) as session:
            repo = JobRepository(session)
            jobs = await repo.acquire_lease(
                queue_name=self.queue_name,
                worker_id=self.worker_id,
                limit=capacity,
                lease_seconds=self.lease_seconds,
            )

        for job in jobs:
            task = asyncio.create_task(self._execute_job(job))
            self._current_jobs[job.id] = task

        return len(jobs)

    @staticmethod
    def _context_for(job: WebhookJob) -> JobContext:
        return JobContext(
            job_id=job.id,
            queue_name=job.queue_name,
            destination=job.destination,
            body=job.body,
            content_type=job.content_type,
            error_callback=job.error_callback,
            timeout_ms=job.timeout_ms,
            delay_ms=job.delay_ms,
            deduplication_id=job.deduplication_id,
            attempt=job.attempt,
            max_attempts=job.max_attempts,
        )

    async def _run_attempt(self, context: JobContext) -> AttemptResult:
        """Run the execution callback; unexpected errors count as failures."""
        with get_tracer().start_as_current_span(SPAN_DELIVER_WEBHOOK) as span:
            span.set_attribute("job_id", str(context.job_id))
            span.set_attribute("queue_name", context.queue_name)
            span.set_attribute("attempt", context.attempt)
            try:
                result = await self._handler(context)
            except Exception as e:
                logger.exception(
                    "Handler raised exception",
                    extra={"job_id": str(context.job_id), "error": str(e)},
                )
                result = TransportFailure(message=f"Handler exception: {e}", duration_ms=0.0)
            span.set_attribute("outcome", _outcome(result))
        return result

    async def _execute_job(self, job: WebhookJob) -> None:
        """
        Execute one attempt of a leased job.

        Handles the full lifecycle:
        1. Run the delivery protocol
        2. Mark as COMPLETED, or schedule a retry / fail terminally
        3. On terminal failure, notify the error callback
        """
        try:
            context = self._context_for(job)
            with job_log_context(context):
                await self._attempt_and_record(job, context)

        except Exception as e:
            # The lease expires and the reaper returns the job to the queue
            logger.exception(
                "Exception executing job",
                extra={"job_id": str(job.id), "error": str(e)},
            )

        finally:
            self._current_jobs.pop(job.id, None)
            self._wake.set()

    async def _attempt_and_record(self, job: WebhookJob, context: JobContext) -> None:
        logger.info("Delivering webhook")

        result = await self._run_attempt(context)
        self._metrics.record_attempt(
            self.queue_name, _outcome(result), result.duration_ms / 1000
        )

        async with session_scope(self._session_factory) as session:
            repo = JobRepository(session)
            if result.success:
                updated = await repo.complete_job(job.id, self.worker_id)
            else:
                updated = await repo.fail_job(job.id, self.worker_id, error=result.error)

        if updated is None:
            logger.warning("Lost lease before acknowledging job")
            return

        if updated.status == JobStatus.COMPLETED:
            logger.info(
                "Webhook delivered",
                extra={
                    "status_code": result.status_code,
                    "duration": f"{result.duration_ms / 1000:.2f}s",
                },
            )
            self._metrics.record_terminal(self.queue_name, "completed")
        elif updated.status == JobStatus.FAILED:
            self._metrics.record_terminal(self.queue_name, "failed")
            await notify_error_callback(context, result.error, self._client)
        else:
            logger.warning(
                "Delivery attempt failed",
                extra={
                    "error": result.error,
                    "remaining_attempts": context.remaining_attempts,
                },
            )

    async def _heartbeat_loop(self) -> None:
        """
        Periodically extend leases on running attempts.

        This prevents jobs from being reclaimed by the reaper
        while they're still being delivered.
        """
        while self._running:
            try:
                await asyncio.sleep(self.heartbeat_interval)

                if not self._current_jobs:
                    continue

                async with session_scope(self._session_factory) as session:
                    repo = JobRepository(session)
                    for job_id in list(self._current_jobs.keys()):
                        await repo.extend_lease(job_id, self.worker_id, self.lease_seconds)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception(f"Error in heartbeat loop: {e}")
