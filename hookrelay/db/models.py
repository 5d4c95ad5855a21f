"""
SQLAlchemy database models.
Defines the webhook job and queue tables of the broker store.
"""

from datetime import datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy import (
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from hookrelay.constants import PENDING_STATUSES, JobStatus


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in every column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class WebhookQueue(Base):
    """
    A named queue and its live concurrency limit.

    The concurrency is overwritten by every submission to the queue, so
    workers running in other processes can follow the latest value.
    """

    __tablename__ = "webhook_queues"

    name: Mapped[str] = mapped_column(String(255), primary_key=True)
    concurrency: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"WebhookQueue(name={self.name}, concurrency={self.concurrency})"


class WebhookJob(Base):
    """
    One webhook delivery job.

    This is the authoritative source of truth for job state.

    Key constraints:
    - (queue_name, dedup_key) is unique. dedup_key mirrors deduplication_id
      only while the job is pending or delayed and is cleared once it is
      leased, which frees the identity for reuse.
    - lease_owner and lease_expires_at track the running attempt for
      at-least-once execution.
    """

    __tablename__ = "webhook_jobs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    queue_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    # Delivery request
    destination: Mapped[str] = mapped_column(Text, nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    content_type: Mapped[str] = mapped_column(String(255), nullable=False)
    error_callback: Mapped[str | None] = mapped_column(Text, nullable=True)
    timeout_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    delay_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Deduplication
    deduplication_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    dedup_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    status: Mapped[JobStatus] = mapped_column(
        Enum(
            JobStatus,
            name="webhook_job_status",
            create_constraint=True,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=JobStatus.QUEUED,
        index=True,
    )

    # Retry tracking
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    backoff_base_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=1000)

    # Lease management
    lease_owner: Mapped[str | None] = mapped_column(String(255), nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Scheduling
    scheduled_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("queue_name", "dedup_key", name="uq_queue_dedup_key"),
        # Index for efficient queue polling
        Index("ix_webhook_jobs_poll", "queue_name", "status", "scheduled_at"),
        # Index for lease expiry checks
        Index("ix_webhook_jobs_lease_expiry", "status", "lease_expires_at"),
    )

    @property
    def is_pending(self) -> bool:
        """Check if the job is waiting to run."""
        return self.status in PENDING_STATUSES

    @property
    def is_retryable(self) -> bool:
        """Check if the job has attempts left."""
        return self.attempt < self.max_attempts

    def __repr__(self) -> str:
        return (
            f"WebhookJob(id={self.id}, queue={self.queue_name}, "
            f"status={self.status}, attempt={self.attempt}/{self.max_attempts})"
        )
