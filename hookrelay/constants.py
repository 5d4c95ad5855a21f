"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobStatus(StrEnum):
    """
    Webhook job lifecycle states.

    State transitions:
    - QUEUED / DELAYED -> RUNNING (lease acquired by a queue worker)
    - RUNNING -> COMPLETED (destination answered before the deadline)
    - RUNNING -> DELAYED (attempt failed, retry scheduled after backoff)
    - RUNNING -> FAILED (attempts exhausted)
    - RUNNING -> QUEUED (lease expired - crash recovery)
    """

    QUEUED = "queued"
    DELAYED = "delayed"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# States in which a job's deduplication id is still active
PENDING_STATUSES: tuple[JobStatus, ...] = (JobStatus.QUEUED, JobStatus.DELAYED)

# Submission defaults
DEFAULT_CONTENT_TYPE = "application/json"
DEFAULT_TIMEOUT_SECONDS = 30
DEFAULT_PARALLELISM = 1
DEFAULT_DELAY_SECONDS = 0
DEFAULT_RETRIES = 0

# Largest timeout or delay whose millisecond value fits a 32-bit column
MAX_DURATION_SECONDS = 2_147_483

# API constants
API_V1_PREFIX = "/v1"
CONTENT_TYPE_FIELD = "Content-Type"

# Metrics names
METRIC_JOBS_SUBMITTED = "webhook_jobs_submitted_total"
METRIC_JOBS_DEDUPLICATED = "webhook_jobs_deduplicated_total"
METRIC_DELIVERY_ATTEMPTS = "webhook_delivery_attempts_total"
METRIC_DELIVERY_DURATION = "webhook_delivery_duration_seconds"
METRIC_JOBS_TERMINAL = "webhook_jobs_terminal_total"
METRIC_ERROR_CALLBACKS = "webhook_error_callbacks_total"
METRIC_QUEUE_CONCURRENCY = "webhook_queue_concurrency"
METRIC_LEASE_EXPIRED = "webhook_lease_expired_total"
METRIC_API_REQUESTS = "api_requests_total"
METRIC_API_LATENCY = "api_request_latency_seconds"

# Trace span names
SPAN_ENQUEUE_JOB = "enqueue_job"
SPAN_DELIVER_WEBHOOK = "deliver_webhook"
SPAN_ERROR_CALLBACK = "error_callback"
