"""Queue worker running the export → convert → validate → compress → store chain."""

from __future__ import annotations

import asyncio
import contextlib
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, TypeVar

import structlog

from ..converters.assimp import AssimpConverter, copy_texture_sidecar
from ..converters.base import SceneExporter
from ..converters.compression import DracoCompressor
from ..domain.models import ConversionResult, JobState, JobType, QueuedJob
from ..exceptions import InputMissingError
from ..infrastructure.queue import PostgresJobQueue
from ..media.glb_inspect import GlbReport, validate_output
from ..media.scratch import ScratchContext, ScratchStore
from ..media.storage import ArtifactLocation, ArtifactStore, StorageOutcome, StorageResolver

T = TypeVar("T")

SHUTDOWN_REASON = "worker shut down before the job finished"


class Stage(str, Enum):
    QUEUED = "queued"
    EXPORTING = "exporting"
    CONVERTING = "converting"
    VALIDATING = "validating"
    COMPRESSING = "compressing"
    STORING = "storing"
    COMPLETED = "completed"
    FAILED = "failed"


STAGE_PROGRESS: dict[Stage, int] = {
    Stage.EXPORTING: 10,
    Stage.CONVERTING: 30,
    Stage.VALIDATING: 40,
    Stage.STORING: 70,
    Stage.COMPLETED: 100,
}
STORE_ONLY_PROGRESS = 20


@dataclass(slots=True, frozen=True)
class ExportOutcome:
    """Source handed to the mesh converter."""

    source: Path
    working_dir: Path
    scratch: ScratchContext | None


@dataclass(slots=True, frozen=True)
class ConvertOutcome:
    location: ArtifactLocation
    textures_copied: int


@dataclass(slots=True, frozen=True)
class ValidateOutcome:
    location: ArtifactLocation
    report: GlbReport | None


@dataclass(slots=True, frozen=True)
class CompressOutcome:
    location: ArtifactLocation
    compressed: bool


class ConversionWorker:
    """Drives one job at a time through the conversion stages.

    ``process_job`` runs the stages and owns filesystem cleanup; ``run_once``
    talks to the queue: it claims a job, reports the outcome and lets the
    queue decide between re-scheduling and a terminal ``failed`` state.
    """

    def __init__(
        self,
        *,
        queue: PostgresJobQueue,
        exporter: SceneExporter,
        converter: AssimpConverter,
        artifacts: ArtifactStore,
        storage: StorageResolver,
        scratch: ScratchStore,
        compressor: DracoCompressor | None = None,
        clock: Callable[[], datetime] | None = None,
        poll_interval: float = 1.0,
        concurrency: int = 4,
    ) -> None:
        self.queue = queue
        self.exporter = exporter
        self.converter = converter
        self.artifacts = artifacts
        self.storage = storage
        self.scratch = scratch
        self.compressor = compressor
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._poll_interval = poll_interval
        self._concurrency = max(1, concurrency)
        self._logger = structlog.get_logger(__name__)

    @staticmethod
    async def _run_sync(func: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:
        """Execute ``func`` in a worker thread to avoid blocking the event loop."""

        return await asyncio.to_thread(func, *args, **kwargs)

    # ------------------------------------------------------------------
    # Queue-facing control flow
    # ------------------------------------------------------------------
    async def run_once(self, job_type: JobType) -> bool:
        """Claim and process at most one job of ``job_type``."""

        job = await self._run_sync(self.queue.acquire_next, job_type, now=self._clock())
        if job is None:
            return False

        try:
            result = await self.process_job(job)
        except asyncio.CancelledError:
            updated = await self._run_sync(self.queue.fail, job.id, SHUTDOWN_REASON, retryable=True)
            if updated.state is JobState.FAILED:
                self._cleanup_terminal(updated)
            raise
        except Exception as exc:
            reason = str(exc) or exc.__class__.__name__
            await self._run_sync(
                self.queue.fail,
                job.id,
                reason,
                retryable=getattr(exc, "retryable", True),
            )
            return True

        await self._run_sync(self.queue.complete, job.id, result)
        return True

    async def run_forever(
        self,
        *,
        worker_id: int,
        job_type: JobType,
        shutdown_event: asyncio.Event,
    ) -> None:
        """Continuously process jobs of ``job_type`` until ``shutdown_event`` is set."""

        try:
            while not shutdown_event.is_set():
                try:
                    has_job = await self.run_once(job_type)
                except Exception:
                    self._logger.exception("worker.loop.failed", worker_id=worker_id, job_type=job_type.value)
                    has_job = False
                if not has_job:
                    await self._wait(shutdown_event, self._poll_interval)
        except asyncio.CancelledError:
            self._logger.debug("worker.cancelled", worker_id=worker_id, job_type=job_type.value)
            raise

    async def reap_stalled(self) -> int:
        """Return expired leases to the queue and clean up jobs that became terminal."""

        released = await self._run_sync(self.queue.release_stalled, now=self._clock())
        for job in released:
            self._logger.warning(
                "worker.job.stalled",
                conversion_id=job.id,
                file_id=job.payload.file_id,
                state=job.state.value,
                attempts_made=job.attempts_made,
            )
            if job.state is JobState.FAILED:
                self._cleanup_terminal(job)
        return len(released)

    async def run_pool(self, shutdown_event: asyncio.Event, *, reap_interval: float = 60.0) -> None:
        """Run ``concurrency`` loops per job type plus the stalled-lease reaper."""

        async def _reaper() -> None:
            while not shutdown_event.is_set():
                try:
                    await self.reap_stalled()
                except Exception:
                    self._logger.exception("worker.reaper.failed")
                await self._wait(shutdown_event, reap_interval)

        tasks = [
            asyncio.create_task(
                self.run_forever(worker_id=index, job_type=job_type, shutdown_event=shutdown_event),
                name=f"sceneconv-{job_type.value}-{index}",
            )
            for job_type in JobType
            for index in range(self._concurrency)
        ]
        tasks.append(asyncio.create_task(_reaper(), name="sceneconv-reaper"))
        self._logger.info("worker.pool.started", loops=len(tasks) - 1, concurrency=self._concurrency)
        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self._logger.info("worker.pool.stopped")

    @staticmethod
    async def _wait(shutdown_event: asyncio.Event, timeout: float) -> None:
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(shutdown_event.wait(), timeout=timeout)

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------
    async def process_job(self, job: QueuedJob) -> ConversionResult:
        """Run every stage of ``job`` and return its result.

        On failure the filesystem is cleaned only when no further attempt
        will run: the input and scratch directory are kept for retries. The
        error is re-raised for the queue to record.
        """

        payload = job.payload
        with structlog.contextvars.bound_contextvars(
            file_id=payload.file_id,
            conversion_id=payload.conversion_id,
            job_type=job.job_type.value,
            attempt=job.attempts_made + 1,
        ):
            self._logger.info("worker.job.started", max_attempts=job.max_attempts)
            stage = Stage.QUEUED
            try:
                if job.job_type is JobType.STORE:
                    stage = Stage.STORING
                    location = await self._store_only(job)
                else:
                    stage = Stage.EXPORTING
                    await self._progress(job, STAGE_PROGRESS[stage])
                    exported = await self._export(job)

                    stage = Stage.CONVERTING
                    await self._progress(job, STAGE_PROGRESS[stage])
                    converted = await self._convert(job, exported)

                    stage = Stage.VALIDATING
                    await self._progress(job, STAGE_PROGRESS[stage])
                    validated = await self._validate(converted)

                    stage = Stage.COMPRESSING
                    compressed = await self._compress(validated)
                    location = compressed.location

                stage = Stage.STORING
                stored = await self.storage.store(location)
                if job.job_type is JobType.CONVERT:
                    await self._progress(job, STAGE_PROGRESS[stage])
            except Exception as exc:
                terminal = job.is_final_attempt or not getattr(exc, "retryable", True)
                self._logger.error(
                    "worker.job.failed",
                    stage=stage.value,
                    error=str(exc),
                    error_type=exc.__class__.__name__,
                    terminal=terminal,
                )
                if terminal:
                    self._cleanup_terminal(job)
                raise

            self._cleanup_success(job, stored)
            result = ConversionResult(
                file_id=payload.file_id,
                conversion_id=payload.conversion_id,
                glb_url=stored.glb_url,
                output_path=str(location.output_path),
            )
            self._logger.info("worker.job.completed", glb_url=stored.glb_url, remote=stored.remote)
            return result

    async def _progress(self, job: QueuedJob, value: int) -> None:
        await self._run_sync(self.queue.update_progress, job.id, value)

    async def _export(self, job: QueuedJob) -> ExportOutcome:
        payload = job.payload
        input_path = Path(payload.input_path)
        if not input_path.exists():
            raise InputMissingError(f"input file not found: {input_path}")

        if payload.source_extension != ".skp":
            self._logger.info("worker.export.skipped", extension=payload.source_extension)
            return ExportOutcome(source=input_path, working_dir=input_path.parent, scratch=None)

        scratch = await self._run_sync(self.scratch.ensure, payload.file_id, payload.conversion_id)
        interchange = await self.exporter.export(input_path, scratch)
        return ExportOutcome(source=interchange, working_dir=scratch.directory, scratch=scratch)

    async def _convert(self, job: QueuedJob, exported: ExportOutcome) -> ConvertOutcome:
        location = await self._run_sync(self.artifacts.ensure_structure, job.payload.file_id)
        await self.converter.convert(exported.source, location.output_path, working_dir=exported.working_dir)
        textures = 0
        if exported.scratch is not None:
            textures = await self._run_sync(
                copy_texture_sidecar,
                exported.scratch.texture_dir,
                location.output_dir / exported.scratch.texture_dir.name,
            )
        return ConvertOutcome(location=location, textures_copied=textures)

    async def _validate(self, converted: ConvertOutcome) -> ValidateOutcome:
        report = await self._run_sync(validate_output, converted.location.output_path)
        return ValidateOutcome(location=converted.location, report=report)

    async def _compress(self, validated: ValidateOutcome) -> CompressOutcome:
        if self.compressor is None:
            return CompressOutcome(location=validated.location, compressed=False)
        compressed = await self.compressor.compress(validated.location.output_path)
        return CompressOutcome(location=validated.location, compressed=compressed)

    async def _store_only(self, job: QueuedJob) -> ArtifactLocation:
        input_path = Path(job.payload.input_path)
        if not input_path.exists():
            raise InputMissingError(f"input file not found: {input_path}")
        location = await self._run_sync(self.artifacts.ensure_structure, job.payload.file_id)
        await self._run_sync(shutil.copyfile, input_path, location.output_path)
        await self._progress(job, STORE_ONLY_PROGRESS)
        return location

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------
    def _cleanup_success(self, job: QueuedJob, stored: StorageOutcome) -> None:
        payload = job.payload
        self.scratch.remove(payload.file_id, payload.conversion_id)
        if stored.remote:
            self.artifacts.remove(payload.file_id)
        self._delete_input(job)

    def _cleanup_terminal(self, job: QueuedJob) -> None:
        payload = job.payload
        self.scratch.remove(payload.file_id, payload.conversion_id)
        self._delete_input(job)

    def _delete_input(self, job: QueuedJob) -> None:
        input_path = Path(job.payload.input_path)
        try:
            input_path.unlink()
        except FileNotFoundError:
            return
        self._logger.info("worker.input.deleted", path=str(input_path))


__all__ = [
    "CompressOutcome",
    "ConversionWorker",
    "ConvertOutcome",
    "ExportOutcome",
    "Stage",
    "ValidateOutcome",
]
