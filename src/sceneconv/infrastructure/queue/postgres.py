"""PostgreSQL-backed conversion queue with an SQLite fallback for tests.

The queue keeps one row per conversion (``id == conversionId``) and applies
the retry policy itself: a failed attempt either re-schedules the row with an
exponential backoff or finalizes it as ``failed``. Workers claim rows with
``SELECT … FOR UPDATE SKIP LOCKED`` so several worker processes can share a
database without double-dispatching.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, ContextManager, Iterator, Mapping

from sqlalchemy import create_engine, delete, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import StaticPool

from ...domain.models import (
    BackoffType,
    ConversionJobPayload,
    ConversionResult,
    JobOptions,
    JobState,
    JobType,
    QueuedJob,
)
from ...exceptions import handle_sqlalchemy_errors
from .schema import conversion_jobs, metadata

STALLED_REASON = "job lease expired before the worker reported a result (stalled)"


@dataclass(slots=True)
class PostgresQueueConfig:
    """Configuration required to talk to the queue database."""

    dsn: str
    default_attempts: int = 3
    backoff_delay_seconds: float = 2.0
    statement_timeout_ms: int = 5_000
    lease_seconds: float = 30 * 60


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_db(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _from_db(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class PostgresJobQueue:
    """Durable job queue client.

    Construction is cheap: the engine (and with it the first connection) is
    created lazily on the first queue operation, so processes that only wire
    the client never touch the database.
    """

    def __init__(
        self,
        *,
        config: PostgresQueueConfig,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config
        self._clock = clock or _utcnow
        self._engine: Engine | None = None
        self._engine_lock = threading.Lock()
        # A single shared SQLite connection must not be used by two threads at once.
        self._sqlite = self._is_sqlite_dsn(config.dsn)
        self._statement_lock = threading.Lock() if self._sqlite else None

    # Public API ---------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            with self._engine_lock:
                if self._engine is None:
                    engine = self._create_engine()
                    with handle_sqlalchemy_errors("initialize queue schema"):
                        metadata.create_all(engine)
                    self._engine = engine
        return self._engine

    def enqueue(
        self,
        job_type: JobType,
        payload: ConversionJobPayload,
        options: JobOptions | None = None,
    ) -> QueuedJob:
        """Persist a job; re-enqueueing an existing job id returns the stored row."""
        options = options or self.default_options()
        job_id = options.job_id or payload.conversion_id
        now = _to_db(self._clock())
        with self._transaction("enqueue job") as conn:
            existing = self._fetch(conn, job_id)
            if existing is not None:
                return existing
            conn.execute(
                conversion_jobs.insert().values(
                    id=job_id,
                    job_type=job_type.value,
                    file_id=payload.file_id,
                    payload=payload.model_dump(by_alias=True),
                    state=JobState.PENDING.value,
                    progress=0,
                    attempts_made=0,
                    max_attempts=max(1, options.attempts),
                    backoff_type=options.backoff_type.value,
                    backoff_delay_seconds=max(0.0, options.backoff_delay_seconds),
                    available_at=now,
                    created_at=now,
                    updated_at=now,
                )
            )
            return self._require(conn, job_id)

    def get_job(self, job_id: str) -> QueuedJob | None:
        with self._transaction("load job") as conn:
            return self._fetch(conn, job_id)

    def acquire_next(self, job_type: JobType, *, now: datetime | None = None) -> QueuedJob | None:
        """Claim the oldest due job of ``job_type``.

        Jobs whose ``file_id`` already has an active execution are skipped, so
        re-uploads of one file are processed one at a time.
        """
        current = _to_db(now or self._clock())
        active = conversion_jobs.alias("active_jobs")
        busy_files = select(active.c.file_id).where(active.c.state == JobState.ACTIVE.value)
        candidate = (
            select(conversion_jobs.c.id)
            .where(
                conversion_jobs.c.job_type == job_type.value,
                conversion_jobs.c.state == JobState.PENDING.value,
                conversion_jobs.c.available_at <= current,
                conversion_jobs.c.file_id.not_in(busy_files),
            )
            .order_by(conversion_jobs.c.available_at, conversion_jobs.c.created_at)
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        with self._transaction("acquire job") as conn:
            job_id = conn.execute(candidate).scalar_one_or_none()
            if job_id is None:
                return None
            conn.execute(
                update(conversion_jobs)
                .where(conversion_jobs.c.id == job_id)
                .values(
                    state=JobState.ACTIVE.value,
                    lease_expires_at=current + timedelta(seconds=self.config.lease_seconds),
                    updated_at=current,
                )
            )
            return self._require(conn, job_id)

    def update_progress(self, job_id: str, progress: int) -> None:
        """Raise the progress of an active job; lower values are ignored."""
        value = min(max(int(progress), 0), 100)
        with self._transaction("update progress") as conn:
            conn.execute(
                update(conversion_jobs)
                .where(
                    conversion_jobs.c.id == job_id,
                    conversion_jobs.c.state == JobState.ACTIVE.value,
                    conversion_jobs.c.progress < value,
                )
                .values(progress=value, updated_at=_to_db(self._clock()))
            )

    def complete(self, job_id: str, result: ConversionResult) -> QueuedJob:
        now = _to_db(self._clock())
        with self._transaction("complete job") as conn:
            conn.execute(
                update(conversion_jobs)
                .where(conversion_jobs.c.id == job_id)
                .values(
                    state=JobState.COMPLETED.value,
                    progress=100,
                    attempts_made=conversion_jobs.c.attempts_made + 1,
                    result=result.model_dump(by_alias=True),
                    failed_reason=None,
                    lease_expires_at=None,
                    finished_at=now,
                    updated_at=now,
                )
            )
            return self._require(conn, job_id)

    def fail(
        self,
        job_id: str,
        reason: str,
        *,
        retryable: bool = True,
        now: datetime | None = None,
    ) -> QueuedJob:
        """Record a failed attempt and re-schedule it while attempts remain."""
        current = _to_db(now or self._clock())
        with self._transaction("fail job") as conn:
            job = self._require(conn, job_id)
            return self._record_failure(conn, job, reason, retryable=retryable, now=current)

    def release_stalled(self, *, now: datetime | None = None) -> list[QueuedJob]:
        """Fail active jobs whose lease expired, applying the normal retry policy."""
        current = _to_db(now or self._clock())
        stalled = (
            select(conversion_jobs.c.id)
            .where(
                conversion_jobs.c.state == JobState.ACTIVE.value,
                conversion_jobs.c.lease_expires_at < current,
            )
            .with_for_update(skip_locked=True)
        )
        with self._transaction("release stalled jobs") as conn:
            released: list[QueuedJob] = []
            for job_id in conn.execute(stalled).scalars().all():
                job = self._require(conn, job_id)
                released.append(self._record_failure(conn, job, STALLED_REASON, retryable=True, now=current))
            return released

    def prune_finished(self, *, keep: int) -> int:
        """Delete all but the ``keep`` most recent jobs of each terminal state."""
        removed = 0
        with self._transaction("prune finished jobs") as conn:
            for state in (JobState.COMPLETED, JobState.FAILED):
                stale_ids = (
                    conn.execute(
                        select(conversion_jobs.c.id)
                        .where(conversion_jobs.c.state == state.value)
                        .order_by(conversion_jobs.c.finished_at.desc())
                        .offset(max(keep, 0))
                    )
                    .scalars()
                    .all()
                )
                if stale_ids:
                    result = conn.execute(
                        delete(conversion_jobs).where(conversion_jobs.c.id.in_(stale_ids))
                    )
                    removed += result.rowcount or 0
        return removed

    def list_jobs(self, *, state: JobState | None = None) -> list[QueuedJob]:
        query = select(conversion_jobs).order_by(conversion_jobs.c.created_at)
        if state is not None:
            query = query.where(conversion_jobs.c.state == state.value)
        with self._transaction("list jobs") as conn:
            return [self._deserialize(row._mapping) for row in conn.execute(query)]

    def default_options(self, *, job_id: str | None = None) -> JobOptions:
        return JobOptions(
            job_id=job_id,
            attempts=self.config.default_attempts,
            backoff_type=BackoffType.EXPONENTIAL,
            backoff_delay_seconds=self.config.backoff_delay_seconds,
        )

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    # Internal utilities -------------------------------------------------

    @staticmethod
    def _is_sqlite_dsn(dsn: str) -> bool:
        return dsn == ":memory:" or dsn.startswith("sqlite:")

    def _create_engine(self) -> Engine:
        dsn = self.config.dsn
        if self._sqlite:
            url = "sqlite://" if dsn in {":memory:", "sqlite://", "sqlite:///:memory:"} else dsn
            if url == "sqlite://":
                return create_engine(
                    url,
                    future=True,
                    poolclass=StaticPool,
                    connect_args={"check_same_thread": False},
                )
            return create_engine(url, future=True, connect_args={"check_same_thread": False})
        if dsn.startswith("postgresql://"):
            dsn = "postgresql+psycopg://" + dsn[len("postgresql://") :]
        return create_engine(
            dsn,
            future=True,
            pool_pre_ping=True,
            connect_args={"options": f"-c statement_timeout={self.config.statement_timeout_ms}"},
        )

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[Connection]:
        lock: ContextManager[Any] = self._statement_lock or nullcontext()
        with lock, handle_sqlalchemy_errors(operation):
            with self.engine.begin() as conn:
                yield conn

    def _record_failure(
        self,
        conn: Connection,
        job: QueuedJob,
        reason: str,
        *,
        retryable: bool,
        now: datetime,
    ) -> QueuedJob:
        if job.state is not JobState.ACTIVE:
            return job
        attempts_made = job.attempts_made + 1
        values: dict[str, Any] = {
            "attempts_made": attempts_made,
            "failed_reason": reason,
            "lease_expires_at": None,
            "updated_at": now,
        }
        if retryable and attempts_made < job.max_attempts:
            delay = job.options.backoff_for(attempts_made)
            values.update(
                state=JobState.PENDING.value,
                available_at=now + timedelta(seconds=delay),
            )
        else:
            values.update(state=JobState.FAILED.value, finished_at=now)
        conn.execute(update(conversion_jobs).where(conversion_jobs.c.id == job.id).values(**values))
        return self._require(conn, job.id)

    def _fetch(self, conn: Connection, job_id: str) -> QueuedJob | None:
        row = conn.execute(select(conversion_jobs).where(conversion_jobs.c.id == job_id)).first()
        if row is None:
            return None
        return self._deserialize(row._mapping)

    def _require(self, conn: Connection, job_id: str) -> QueuedJob:
        job = self._fetch(conn, job_id)
        if job is None:
            raise LookupError(f"conversion job {job_id} not found")
        return job

    @staticmethod
    def _deserialize(row: Mapping[str, Any]) -> QueuedJob:
        result_raw = row["result"]
        return QueuedJob(
            id=row["id"],
            job_type=JobType(row["job_type"]),
            payload=ConversionJobPayload.model_validate(row["payload"]),
            state=JobState(row["state"]),
            progress=int(row["progress"] or 0),
            attempts_made=int(row["attempts_made"] or 0),
            max_attempts=int(row["max_attempts"]),
            backoff_type=BackoffType(row["backoff_type"]),
            backoff_delay_seconds=float(row["backoff_delay_seconds"]),
            available_at=_from_db(row["available_at"]),  # type: ignore[arg-type]
            created_at=_from_db(row["created_at"]),  # type: ignore[arg-type]
            updated_at=_from_db(row["updated_at"]),  # type: ignore[arg-type]
            lease_expires_at=_from_db(row["lease_expires_at"]),
            finished_at=_from_db(row["finished_at"]),
            result=ConversionResult.model_validate(result_raw) if result_raw else None,
            failed_reason=row["failed_reason"],
        )


def init_queue(config: PostgresQueueConfig) -> PostgresJobQueue:
    """Build the process-wide queue client without connecting."""

    return PostgresJobQueue(config=config)


__all__ = ["PostgresJobQueue", "PostgresQueueConfig", "STALLED_REASON", "init_queue"]
