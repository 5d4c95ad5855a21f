"""
Submission handler: from a validated request to an enqueued job.
"""

import logging

from hookrelay.constants import SPAN_ENQUEUE_JOB
from hookrelay.dispatch.dedup import derive_deduplication_id
from hookrelay.dispatch.registry import DispatchContext
from hookrelay.observability.metrics import get_metrics
from hookrelay.observability.tracing import get_tracer
from hookrelay.types.api import EnqueueRequest, EnqueueResponse

logger = logging.getLogger(__name__)


async def submit(context: DispatchContext, request: EnqueueRequest) -> EnqueueResponse:
    """
    Enqueue a webhook job.

    Ensures the queue and its worker exist, applies the submitted
    parallelism to the worker (also when it was just created), derives the
    dedup identity and adds the job to the queue.

    Args:
        context: The process dispatch context.
        request: Validated submission.

    Returns:
        EnqueueResponse; ``created`` is False when the submission coalesced
        onto a pending job with the same dedup identity.
    """
    with get_tracer().start_as_current_span(SPAN_ENQUEUE_JOB) as span:
        span.set_attribute("queue_name", request.queue_name)

        queue, worker = await context.registry.ensure(request.queue_name)
        worker.concurrency = request.parallelism
        await queue.save_concurrency(request.parallelism)

        deduplication_id = derive_deduplication_id(
            body=request.body,
            deduplication_id=request.deduplication_id,
            content_based=request.content_based_deduplication,
        )

        job, created = await queue.add(
            destination=request.destination,
            body=request.body,
            content_type=request.content_type,
            timeout_ms=request.timeout_ms,
            error_callback=request.error_callback,
            delay_ms=request.delay_ms,
            attempts=request.retries + 1,
            deduplication_id=deduplication_id,
        )
        span.set_attribute("job_id", str(job.id))

    get_metrics().record_job_submitted(request.queue_name, created)

    return EnqueueResponse(
        job_id=job.id,
        queue_name=job.queue_name,
        deduplication_id=deduplication_id,
        created=created,
        message="Job enqueued" if created else "Job already pending (deduplicated)",
    )
