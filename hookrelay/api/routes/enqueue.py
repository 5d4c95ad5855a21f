"""
Job submission and inspection routes.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from hookrelay.api.dependencies import Dispatch, Session
from hookrelay.constants import API_V1_PREFIX
from hookrelay.db.models import WebhookJob
from hookrelay.db.repository import JobRepository
from hookrelay.dispatch.submission import submit
from hookrelay.types.api import (
    EnqueueRequest,
    EnqueueResponse,
    ErrorResponse,
    JobResponse,
    QueueListResponse,
    QueueResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Jobs"])


def _job_to_response(job: WebhookJob) -> JobResponse:
    """Convert a WebhookJob model to a JobResponse."""
    return JobResponse(
        id=job.id,
        queue_name=job.queue_name,
        destination=job.destination,
        content_type=job.content_type,
        error_callback=job.error_callback,
        timeout_ms=job.timeout_ms,
        delay_ms=job.delay_ms,
        deduplication_id=job.deduplication_id,
        status=job.status,
        attempt=job.attempt,
        max_attempts=job.max_attempts,
        scheduled_at=job.scheduled_at,
        created_at=job.created_at,
        completed_at=job.completed_at,
        last_error=job.last_error,
    )


@router.post(
    "/enqueue",
    response_model=EnqueueResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Submit a webhook job",
    description=(
        "Enqueue an HTTP POST to be delivered later. Submissions whose "
        "deduplication id is still pending in the queue are coalesced."
    ),
)
async def enqueue(request: EnqueueRequest, context: Dispatch) -> EnqueueResponse:
    """
    Submit a webhook job.

    Args:
        request: Validated submission.
        context: Process dispatch context.

    Returns:
        EnqueueResponse with the job id.
    """
    return await submit(context, request)


@router.get(
    f"{API_V1_PREFIX}/jobs/{{job_id}}",
    response_model=JobResponse,
    responses={status.HTTP_404_NOT_FOUND: {"model": ErrorResponse}},
    summary="Get job details",
)
async def get_job(job_id: UUID, session: Session) -> JobResponse:
    """
    Get job details by ID.

    Raises:
        HTTPException: If the job is not found.
    """
    job = await JobRepository(session).get_job(job_id)

    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found",
        )

    return _job_to_response(job)


@router.get(
    f"{API_V1_PREFIX}/queues",
    response_model=QueueListResponse,
    summary="List queues",
    description="List queues with their concurrency and job counts by status.",
)
async def list_queues(session: Session, context: Dispatch) -> QueueListResponse:
    """List all queues known to the broker store."""
    repo = JobRepository(session)
    queues = []

    for queue in await repo.list_queues():
        entry = context.registry.get(queue.name)
        worker = entry[1] if entry is not None else None
        queues.append(
            QueueResponse(
                name=queue.name,
                concurrency=queue.concurrency,
                worker_concurrency=worker.concurrency if worker else None,
                in_flight=worker.in_flight if worker else None,
                jobs=await repo.get_job_stats(queue_name=queue.name),
            )
        )

    return QueueListResponse(queues=queues)
