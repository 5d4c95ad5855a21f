"""
Webhook delivery protocol.

One call to ``deliver`` is one attempt: wait the job's timeout, then POST the
body to the destination under a deadline of that same timeout. Any response
is a success; status codes are not inspected. The outcome is returned as an
explicit ``AttemptResult`` instead of being raised, so the worker decides
about retries and callbacks from the value.

Attempts may run more than once for the same job (retries, crash recovery),
so destinations must tolerate duplicate deliveries.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable

import httpx

from hookrelay.config import get_settings
from hookrelay.constants import SPAN_ERROR_CALLBACK
from hookrelay.observability.metrics import get_metrics
from hookrelay.observability.tracing import get_tracer
from hookrelay.types.job import (
    AttemptResult,
    DeliverySuccess,
    ErrorCallbackPayload,
    JobContext,
    TimeoutFailure,
    TransportFailure,
)

logger = logging.getLogger(__name__)

# Type alias for the per-attempt execution callback of a queue worker
AttemptHandler = Callable[[JobContext], Awaitable[AttemptResult]]

# Errors httpx raises for a request that could not be carried out
TRANSPORT_ERRORS = (httpx.HTTPError, httpx.InvalidURL)


def _describe(error: Exception) -> str:
    message = str(error)
    return f"{type(error).__name__}: {message}" if message else type(error).__name__


async def _post(context: JobContext, client: httpx.AsyncClient) -> httpx.Response:
    # The response body is read in full by post() and then discarded
    return await client.post(
        context.destination,
        content=context.body,
        headers={"Content-Type": context.content_type},
    )


async def deliver(context: JobContext, client: httpx.AsyncClient) -> AttemptResult:
    """
    Run one delivery attempt.

    The job's timeout is used twice: as the wait before the request and as
    the deadline of the request that follows. A timeout of zero leaves no
    time for the request, so such an attempt times out.

    Args:
        context: The leased job.
        client: Shared outbound HTTP client (without its own timeout).

    Returns:
        DeliverySuccess, TimeoutFailure or TransportFailure.
    """
    start = time.monotonic()
    timeout = context.timeout_ms / 1000

    try:
        await asyncio.sleep(timeout)
        response = await asyncio.wait_for(_post(context, client), timeout=timeout)
    except TimeoutError:
        return TimeoutFailure(
            timeout_ms=context.timeout_ms,
            duration_ms=(time.monotonic() - start) * 1000,
        )
    except TRANSPORT_ERRORS as e:
        return TransportFailure(
            message=_describe(e),
            duration_ms=(time.monotonic() - start) * 1000,
        )

    return DeliverySuccess(
        status_code=response.status_code,
        duration_ms=(time.monotonic() - start) * 1000,
    )


async def notify_error_callback(
    context: JobContext,
    error: str,
    client: httpx.AsyncClient,
) -> bool:
    """
    POST a failure notification to the job's error callback.

    Best effort: the outcome is logged and counted, never retried and never
    raised, and it does not affect the job's own state.

    Returns:
        True if the callback endpoint answered with a non-error status.
    """
    if not context.error_callback:
        return False

    metrics = get_metrics()
    payload = ErrorCallbackPayload.from_attempt(context, error)

    with get_tracer().start_as_current_span(SPAN_ERROR_CALLBACK) as span:
        span.set_attribute("job_id", str(context.job_id))
        span.set_attribute("queue_name", context.queue_name)
        try:
            response = await client.post(
                context.error_callback,
                json=payload.to_json(),
                timeout=get_settings().callback_timeout_seconds,
            )
        except TRANSPORT_ERRORS as e:
            logger.warning(
                "Error callback delivery failed",
                extra={
                    "job_id": str(context.job_id),
                    "error_callback": context.error_callback,
                    "error": _describe(e),
                },
            )
            metrics.record_error_callback(context.queue_name, "error")
            return False

    if response.is_error:
        logger.warning(
            "Error callback rejected",
            extra={
                "job_id": str(context.job_id),
                "error_callback": context.error_callback,
                "status_code": response.status_code,
            },
        )
        metrics.record_error_callback(context.queue_name, "rejected")
        return False

    logger.info(
        "Error callback delivered",
        extra={"job_id": str(context.job_id), "error_callback": context.error_callback},
    )
    metrics.record_error_callback(context.queue_name, "delivered")
    return True
