"""Initial schema with webhook_queues and webhook_jobs tables

Revision ID: 001
Revises: 
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create enum using raw SQL with IF NOT EXISTS
    op.execute("""
        DO $$ BEGIN
            CREATE TYPE webhook_job_status AS ENUM ('queued', 'delayed', 'running', 'completed', 'failed');
        EXCEPTION
            WHEN duplicate_object THEN null;
        END $$;
    """)

    op.create_table(
        "webhook_queues",
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("concurrency", sa.Integer, nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("name"),
    )

    op.create_table(
        "webhook_jobs",
        sa.Column("id", sa.Uuid, nullable=False),
        sa.Column("queue_name", sa.String(255), nullable=False),
        sa.Column("destination", sa.Text, nullable=False),
        sa.Column("body", sa.Text, nullable=False),
        sa.Column("content_type", sa.String(255), nullable=False),
        sa.Column("error_callback", sa.Text, nullable=True),
        sa.Column("timeout_ms", sa.Integer, nullable=False),
        sa.Column("delay_ms", sa.Integer, nullable=False, server_default="0"),
        sa.Column("deduplication_id", sa.String(255), nullable=True),
        sa.Column("dedup_key", sa.String(255), nullable=True),
        sa.Column(
            "status",
            postgresql.ENUM(
                "queued", "delayed", "running", "completed", "failed",
                name="webhook_job_status",
                create_type=False,
            ),
            nullable=False,
            server_default="queued",
        ),
        sa.Column("attempt", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="1"),
        sa.Column("backoff_base_ms", sa.Integer, nullable=False, server_default="1000"),
        sa.Column("lease_owner", sa.String(255), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime, nullable=True),
        sa.Column("scheduled_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime, nullable=True),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_index("ix_webhook_jobs_queue_name", "webhook_jobs", ["queue_name"])
    op.create_index("ix_webhook_jobs_status", "webhook_jobs", ["status"])
    op.create_index(
        "ix_webhook_jobs_poll",
        "webhook_jobs",
        ["queue_name", "status", "scheduled_at"],
    )
    op.create_index(
        "ix_webhook_jobs_lease_expiry",
        "webhook_jobs",
        ["status", "lease_expires_at"],
    )

    # Active dedup ids are unique per queue; NULLs never conflict
    op.create_unique_constraint(
        "uq_queue_dedup_key",
        "webhook_jobs",
        ["queue_name", "dedup_key"],
    )


def downgrade() -> None:
    op.drop_constraint("uq_queue_dedup_key", "webhook_jobs")
    op.drop_index("ix_webhook_jobs_lease_expiry")
    op.drop_index("ix_webhook_jobs_poll")
    op.drop_index("ix_webhook_jobs_status")
    op.drop_index("ix_webhook_jobs_queue_name")

    op.drop_table("webhook_jobs")
    op.drop_table("webhook_queues")

    op.execute("DROP TYPE IF EXISTS webhook_job_status")
