"""
Integration tests for queue workers delivering webhooks end to end.
"""

import time
from datetime import timedelta

import pytest
from sqlalchemy import update

from conftest import wait_until
from hookrelay.constants import JobStatus
from hookrelay.db.connection import session_scope
from hookrelay.db.models import WebhookJob, utcnow
from hookrelay.db.repository import JobRepository
from hookrelay.dispatch.submission import submit
from hookrelay.reaper.main import Reaper
from hookrelay.types.api import EnqueueRequest
from hookrelay.worker.main import WorkerSupervisor


def make_request(**overrides) -> EnqueueRequest:
    data = {
        "queueName": "q1",
        "destination": "http://receiver/ok",
        "body": "hi",
        "timeout": 0.05,
        "retries": 0,
    }
    data.update(overrides)
    return EnqueueRequest.model_validate(data)


async def job_status(session_factory, job_id) -> JobStatus | None:
    async with session_scope(session_factory) as session:
        job = await JobRepository(session).get_job(job_id)
        return job.status if job else None


async def _is(session_factory, job_id, status: JobStatus) -> bool:
    return await job_status(session_factory, job_id) == status


class TestDelivery:
    """Tests for the delivery lifecycle run by a queue worker."""

    @pytest.mark.asyncio
    async def test_successful_delivery(self, dispatch, receiver, session_factory):
        """Test a reachable destination completes the job without callback."""
        start = time.monotonic()
        response = await submit(
            dispatch,
            make_request(timeout=0.05, errorCallback="http://receiver/callback"),
        )

        await wait_until(lambda: _is(session_factory, response.job_id, JobStatus.COMPLETED))

        [request] = receiver.to("/ok")
        assert request.body == b"hi"
        assert request.headers["content-type"] == "application/json"
        assert request.at - start >= 0.05
        assert receiver.to("/callback") == []

    @pytest.mark.asyncio
    async def test_timeout_notifies_error_callback(
        self, dispatch, receiver, session_factory
    ):
        """Test a destination that never answers fails the job and notifies."""
        start = time.monotonic()
        response = await submit(
            dispatch,
            make_request(
                destination="http://receiver/hang",
                timeout=0.05,
                errorCallback="http://receiver/callback",
            ),
        )

        await wait_until(lambda: len(receiver.to("/callback")) == 1)

        [callback] = receiver.to("/callback")
        payload = callback.json()
        assert payload["jobId"] == str(response.job_id)
        assert payload["queueName"] == "q1"
        assert payload["destination"] == "http://receiver/hang"
        assert payload["body"] == "hi"
        assert payload["error"] == "Timeout after 50ms"
        assert callback.at - start >= 0.1
        assert await job_status(session_factory, response.job_id) == JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_retries_with_increasing_backoff(
        self, dispatch, receiver, session_factory
    ):
        """Test retries=2 gives exactly three attempts with growing gaps."""
        response = await submit(
            dispatch,
            make_request(
                destination="http://receiver/down",
                retries=2,
                errorCallback="http://receiver/callback",
            ),
        )

        await wait_until(lambda: len(receiver.to("/callback")) == 1)

        attempts = [r.at for r in receiver.to("/down")]
        assert len(attempts) == 3
        first_gap = attempts[1] - attempts[0]
        second_gap = attempts[2] - attempts[1]
        assert first_gap >= 0.1
        assert second_gap > first_gap
        assert "ConnectError" in receiver.to("/callback")[0].json()["error"]
        assert await job_status(session_factory, response.job_id) == JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_error_status_is_success(self, dispatch, receiver, session_factory):
        """Test an error status code from the destination is not retried."""
        response = await submit(
            dispatch,
            make_request(destination="http://receiver/error", retries=2),
        )

        await wait_until(lambda: _is(session_factory, response.job_id, JobStatus.COMPLETED))

        assert len(receiver.to("/error")) == 1

    @pytest.mark.asyncio
    async def test_failure_without_callback(self, dispatch, receiver, session_factory):
        """Test terminal failure without callback only marks the job failed."""
        response = await submit(dispatch, make_request(destination="http://receiver/down"))

        await wait_until(lambda: _is(session_factory, response.job_id, JobStatus.FAILED))

        assert receiver.to("/callback") == []

    @pytest.mark.asyncio
    async def test_unreachable_callback_keeps_job_failed(
        self, dispatch, receiver, session_factory
    ):
        """Test a failing callback does not change the job's outcome."""
        response = await submit(
            dispatch,
            make_request(
                destination="http://receiver/down",
                errorCallback="http://receiver/callback-down",
            ),
        )

        await wait_until(lambda: len(receiver.to("/callback-down")) == 1)

        assert await job_status(session_factory, response.job_id) == JobStatus.FAILED
        assert len(receiver.to("/callback-down")) == 1


class TestParallelism:
    """Tests for the per-queue concurrency limit."""

    @pytest.mark.asyncio
    async def test_parallelism_caps_concurrent_attempts(self, dispatch, receiver):
        """Test parallelism=1 runs attempts one at a time."""
        for _ in range(3):
            await submit(
                dispatch,
                make_request(destination="http://receiver/slow", timeout=0.5, parallelism=1),
            )

        await wait_until(lambda: len(receiver.to("/slow")) == 3)
        await wait_until(lambda: receiver.active == 0)

        assert receiver.max_active == 1

    @pytest.mark.asyncio
    async def test_raised_parallelism_applies_live(self, dispatch, receiver):
        """Test a later submission raising parallelism widens the running worker."""
        receiver.slow_seconds = 0.3
        for _ in range(4):
            await submit(
                dispatch,
                make_request(destination="http://receiver/slow", timeout=0.5, parallelism=1),
            )
        await wait_until(lambda: receiver.active == 1)

        await submit(
            dispatch,
            make_request(destination="http://receiver/slow", timeout=0.5, parallelism=3),
        )

        await wait_until(lambda: len(receiver.to("/slow")) == 5)
        await wait_until(lambda: receiver.active == 0)

        assert 2 <= receiver.max_active <= 3

    @pytest.mark.asyncio
    async def test_queues_run_independently(self, dispatch, receiver):
        """Test each queue has its own limit."""
        for name in ("q1", "q2"):
            await submit(
                dispatch,
                make_request(
                    queueName=name,
                    destination="http://receiver/slow",
                    timeout=0.5,
                    parallelism=1,
                ),
            )

        await wait_until(lambda: len(receiver.to("/slow")) == 2)
        await wait_until(lambda: receiver.active == 0)

        assert receiver.max_active == 2


class TestDeduplication:
    """Tests for dedup against pending jobs."""

    @pytest.mark.asyncio
    async def test_duplicate_of_delayed_job_is_noop(self, dispatch, receiver):
        """Test resubmitting a delayed job's dedup id does not add a job."""
        first = await submit(
            dispatch, make_request(delay=10, deduplicationId="order-1")
        )
        second = await submit(
            dispatch, make_request(delay=10, deduplicationId="order-1", body="other")
        )

        queue, _ = dispatch.registry.get("q1")
        assert first.created is True
        assert second.created is False
        assert second.job_id == first.job_id
        assert await queue.counts() == {"delayed": 1}
        assert receiver.requests == []


class TestRecovery:
    """Tests for the reaper and the standalone worker supervisor."""

    @pytest.mark.asyncio
    async def test_reaper_requeues_expired_lease(
        self, dispatch, receiver, session_factory
    ):
        """Test a job abandoned by a crashed worker is delivered again."""
        async with session_scope(session_factory) as session:
            repo = JobRepository(session)
            job, _ = await repo.enqueue(
                queue_name="orphan",
                destination="http://receiver/ok",
                body="hi",
                content_type="text/plain",
                timeout_ms=50,
                max_attempts=2,
            )
            await repo.acquire_lease("orphan", "dead-worker", limit=1, lease_seconds=60)
            await session.execute(
                update(WebhookJob)
                .where(WebhookJob.id == job.id)
                .values(lease_expires_at=utcnow() - timedelta(seconds=1))
            )

        recovered = await Reaper(session_factory, interval_seconds=1).run_once()
        assert recovered == 1

        await dispatch.registry.ensure("orphan")
        await wait_until(lambda: _is(session_factory, job.id, JobStatus.COMPLETED))

        assert len(receiver.to("/ok")) == 1

    @pytest.mark.asyncio
    async def test_supervisor_syncs_persisted_queues(self, dispatch, session_factory):
        """Test queue discovery creates workers with the stored concurrency."""
        async with session_scope(session_factory) as session:
            repo = JobRepository(session)
            await repo.upsert_queue("qa", 2)
            await repo.upsert_queue("qb", 1)

        supervisor = WorkerSupervisor(dispatch, interval_seconds=1)

        assert await supervisor.sync_queues() == 2
        _, worker = dispatch.registry.get("qa")
        assert worker.concurrency == 2
        assert worker.is_running is True

        async with session_scope(session_factory) as session:
            await JobRepository(session).upsert_queue("qa", 4)
        await supervisor.sync_queues()

        assert worker.concurrency == 4
