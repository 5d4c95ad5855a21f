"""
Job-related type definitions for internal use.
"""

from dataclasses import dataclass
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


@dataclass(frozen=True)
class JobContext:
    """
    Snapshot of a leased job handed to the delivery protocol.

    Times are in milliseconds, converted at the submission boundary.
    """

    job_id: UUID
    queue_name: str
    destination: str
    body: str
    content_type: str
    error_callback: str | None
    timeout_ms: int
    delay_ms: int
    deduplication_id: str | None
    attempt: int
    max_attempts: int

    @property
    def is_last_attempt(self) -> bool:
        """Check if this is the last retry attempt."""
        return self.attempt >= self.max_attempts

    @property
    def remaining_attempts(self) -> int:
        """Get remaining retry attempts."""
        return max(0, self.max_attempts - self.attempt)


@dataclass(frozen=True)
class DeliverySuccess:
    """The destination answered before the deadline (any status code)."""

    status_code: int
    duration_ms: float

    @property
    def success(self) -> bool:
        return True


@dataclass(frozen=True)
class TimeoutFailure:
    """The attempt deadline elapsed before the destination answered."""

    timeout_ms: int
    duration_ms: float

    @property
    def success(self) -> bool:
        return False

    @property
    def error(self) -> str:
        return f"Timeout after {self.timeout_ms}ms"


@dataclass(frozen=True)
class TransportFailure:
    """The outbound request raised a transport error."""

    message: str
    duration_ms: float

    @property
    def success(self) -> bool:
        return False

    @property
    def error(self) -> str:
        return self.message


AttemptResult = DeliverySuccess | TimeoutFailure | TransportFailure


class ErrorCallbackPayload(BaseModel):
    """
    JSON body POSTed to a job's error callback after a failed attempt.
    """

    model_config = ConfigDict(populate_by_name=True)

    error: str
    job_id: str = Field(alias="jobId")
    queue_name: str = Field(alias="queueName")
    destination: str
    body: str
    content_type: str = Field(alias="contentType")
    timeout: int
    delay: int
    deduplication_id: str | None = Field(default=None, alias="deduplicationId")

    @classmethod
    def from_attempt(cls, context: JobContext, error: str) -> "ErrorCallbackPayload":
        """Build the notification for a failed attempt of ``context``."""
        return cls(
            error=error,
            job_id=str(context.job_id),
            queue_name=context.queue_name,
            destination=context.destination,
            body=context.body,
            content_type=context.content_type,
            timeout=context.timeout_ms,
            delay=context.delay_ms,
            deduplication_id=context.deduplication_id,
        )

    def to_json(self) -> dict[str, Any]:
        """Wire representation; ``deduplicationId`` is omitted when absent."""
        return self.model_dump(by_alias=True, exclude_none=True)
