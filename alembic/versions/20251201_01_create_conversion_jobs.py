"""Create the conversion job queue table."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "20251201_01"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "conversion_jobs",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("job_type", sa.Text(), nullable=False),
        sa.Column("file_id", sa.Text(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("state", sa.Text(), nullable=False),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("attempts_made", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False),
        sa.Column("backoff_type", sa.Text(), nullable=False),
        sa.Column("backoff_delay_seconds", sa.Float(), nullable=False),
        sa.Column("available_at", sa.DateTime(), nullable=False),
        sa.Column("lease_expires_at", sa.DateTime()),
        sa.Column("result", sa.JSON()),
        sa.Column("failed_reason", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("finished_at", sa.DateTime()),
    )
    op.create_index(
        "ix_conversion_jobs_dispatch",
        "conversion_jobs",
        ["job_type", "state", "available_at"],
    )
    op.create_index("ix_conversion_jobs_file_state", "conversion_jobs", ["file_id", "state"])
    op.create_index("ix_conversion_jobs_finished", "conversion_jobs", ["state", "finished_at"])


def downgrade() -> None:
    op.drop_index("ix_conversion_jobs_finished", table_name="conversion_jobs")
    op.drop_index("ix_conversion_jobs_file_state", table_name="conversion_jobs")
    op.drop_index("ix_conversion_jobs_dispatch", table_name="conversion_jobs")
    op.drop_table("conversion_jobs")
