"""
API request and response type definitions.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from hookrelay.constants import (
    CONTENT_TYPE_FIELD,
    DEFAULT_CONTENT_TYPE,
    DEFAULT_DELAY_SECONDS,
    DEFAULT_PARALLELISM,
    DEFAULT_RETRIES,
    DEFAULT_TIMEOUT_SECONDS,
    MAX_DURATION_SECONDS,
    JobStatus,
)


class EnqueueRequest(BaseModel):
    """Request body for submitting a webhook job."""

    model_config = ConfigDict(populate_by_name=True)

    # handler options
    queue_name: str = Field(..., min_length=1, alias="queueName")
    destination: str = Field(..., min_length=1, description="Target URL")
    body: str = Field(..., description="Outbound request body")
    error_callback: str | None = Field(
        default=None, alias="errorCallback", description="URL notified on failure"
    )
    content_type: str = Field(
        default=DEFAULT_CONTENT_TYPE, min_length=1, alias=CONTENT_TYPE_FIELD
    )
    timeout: float = Field(
        default=DEFAULT_TIMEOUT_SECONDS,
        ge=0,
        le=MAX_DURATION_SECONDS,
        allow_inf_nan=False,
        description="Processing timeout in seconds",
    )

    # worker options
    parallelism: int = Field(default=DEFAULT_PARALLELISM, ge=1)
    delay: float = Field(
        default=DEFAULT_DELAY_SECONDS,
        ge=0,
        le=MAX_DURATION_SECONDS,
        allow_inf_nan=False,
        description="Delay until the job is processed in seconds",
    )
    retries: int = Field(default=DEFAULT_RETRIES, ge=0)
    deduplication_id: str | None = Field(default=None, alias="deduplicationId")
    content_based_deduplication: bool = Field(
        default=False, alias="contentBasedDeduplication"
    )

    @property
    def timeout_ms(self) -> int:
        return int(self.timeout * 1000)

    @property
    def delay_ms(self) -> int:
        return int(self.delay * 1000)


class EnqueueResponse(BaseModel):
    """Response body after submitting a job."""

    model_config = ConfigDict(populate_by_name=True)

    job_id: UUID = Field(alias="jobId")
    queue_name: str = Field(alias="queueName")
    deduplication_id: str | None = Field(default=None, alias="deduplicationId")
    created: bool
    message: str = "Job enqueued"


class JobResponse(BaseModel):
    """Full job details response."""

    model_config = ConfigDict(populate_by_name=True)

    id: UUID
    queue_name: str = Field(alias="queueName")
    destination: str
    content_type: str = Field(alias="contentType")
    error_callback: str | None = Field(alias="errorCallback")
    timeout_ms: int = Field(alias="timeoutMs")
    delay_ms: int = Field(alias="delayMs")
    deduplication_id: str | None = Field(alias="deduplicationId")
    status: JobStatus
    attempt: int
    max_attempts: int = Field(alias="maxAttempts")
    scheduled_at: datetime | None = Field(alias="scheduledAt")
    created_at: datetime = Field(alias="createdAt")
    completed_at: datetime | None = Field(alias="completedAt")
    last_error: str | None = Field(alias="lastError")


class QueueResponse(BaseModel):
    """State of one queue."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    concurrency: int
    worker_concurrency: int | None = Field(default=None, alias="workerConcurrency")
    in_flight: int | None = Field(default=None, alias="inFlight")
    jobs: dict[str, int]


class QueueListResponse(BaseModel):
    """All known queues."""

    queues: list[QueueResponse]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    timestamp: datetime


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    detail: str | None = None
