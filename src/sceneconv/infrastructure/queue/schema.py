"""SQLAlchemy metadata describing the conversion queue schema."""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
)

metadata = MetaData()

# Timestamps are naive UTC so SQLite and PostgreSQL compare them identically.
conversion_jobs = Table(
    "conversion_jobs",
    metadata,
    Column("id", Text, primary_key=True),
    Column("job_type", Text, nullable=False),
    Column("file_id", Text, nullable=False),
    Column("payload", JSON, nullable=False),
    Column("state", Text, nullable=False),
    Column("progress", Integer, nullable=False, default=0),
    Column("attempts_made", Integer, nullable=False, default=0),
    Column("max_attempts", Integer, nullable=False),
    Column("backoff_type", Text, nullable=False),
    Column("backoff_delay_seconds", Float, nullable=False),
    Column("available_at", DateTime(), nullable=False),
    Column("lease_expires_at", DateTime(), nullable=True),
    Column("result", JSON, nullable=True),
    Column("failed_reason", Text, nullable=True),
    Column("created_at", DateTime(), nullable=False),
    Column("updated_at", DateTime(), nullable=False),
    Column("finished_at", DateTime(), nullable=True),
)

Index(
    "ix_conversion_jobs_dispatch",
    conversion_jobs.c.job_type,
    conversion_jobs.c.state,
    conversion_jobs.c.available_at,
)
Index("ix_conversion_jobs_file_state", conversion_jobs.c.file_id, conversion_jobs.c.state)
Index("ix_conversion_jobs_finished", conversion_jobs.c.state, conversion_jobs.c.finished_at)

__all__ = ["metadata", "conversion_jobs"]
