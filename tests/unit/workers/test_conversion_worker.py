from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

import httpx
import pytest

from src.sceneconv.converters.assimp import AssimpConverter
from src.sceneconv.converters.base import SceneExporter
from src.sceneconv.converters.compression import DracoCompressor
from src.sceneconv.converters.process import ProcessResult
from src.sceneconv.domain.models import ConversionJobPayload, JobState, JobType
from src.sceneconv.exceptions import ExternalToolError, QueueUnavailableError
from src.sceneconv.infrastructure.queue import PostgresJobQueue
from src.sceneconv.media.scratch import ScratchContext, ScratchStore
from src.sceneconv.media.storage import ArtifactStore, StorageResolver
from src.sceneconv.workers.conversion_worker import ConversionWorker
from tests.helpers.fakes import (
    SAMPLE_DOCUMENT,
    Clock,
    FakeRunner,
    RecordedCall,
    build_glb,
    exit_with,
    make_queue,
)

GLB_BYTES = build_glb(SAMPLE_DOCUMENT, binary=b"\x00\x01")


class FakeExporter(SceneExporter):
    """Writes a Collada file plus one texture, like the authoring tool does."""

    def __init__(self, *, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[Path] = []

    async def export(self, input_path: Path, scratch: ScratchContext) -> Path:
        self.calls.append(input_path)
        if self.error is not None:
            raise self.error
        output = scratch.interchange_path("dae")
        output.write_text("<COLLADA/>")
        scratch.texture_dir.mkdir(exist_ok=True)
        (scratch.texture_dir / "wood.jpg").write_bytes(b"jpg")
        return output


def _assimp_writes_glb(call: RecordedCall) -> ProcessResult:
    Path(call.command[3]).write_bytes(GLB_BYTES)
    return ProcessResult(command=call.command, returncode=0)


@dataclass
class Harness:
    worker: ConversionWorker
    queue: PostgresJobQueue
    clock: Clock
    root: Path
    exporter: FakeExporter
    requests: list[httpx.Request] = field(default_factory=list)
    progress: list[int] = field(default_factory=list)

    @property
    def scratch_dir(self) -> Path:
        return self.root / "scratch" / "sceneconv" / "file-1" / "conv-1"

    @property
    def output_dir(self) -> Path:
        return self.root / "out" / "file-1"

    def submit(self, name: str = "house.skp", job_type: JobType = JobType.CONVERT, data: bytes = b"skp") -> Path:
        upload = self.root / "uploads" / f"upload-1{Path(name).suffix}"
        upload.parent.mkdir(parents=True, exist_ok=True)
        upload.write_bytes(data)
        self.queue.enqueue(
            job_type,
            ConversionJobPayload(
                file_id="file-1",
                conversion_id="conv-1",
                input_path=str(upload),
                original_filename=name,
            ),
        )
        return upload

    def run_once(self, job_type: JobType = JobType.CONVERT) -> bool:
        return asyncio.run(self.worker.run_once(job_type))

    def job(self):
        job = self.queue.get_job("conv-1")
        assert job is not None
        return job


def _harness(
    tmp_path: Path,
    *,
    assimp: FakeRunner | None = None,
    exporter: FakeExporter | None = None,
    store_url: str | None = None,
    internal_key: str | None = None,
    remote_response: httpx.Response | None = None,
    compressor: DracoCompressor | None = None,
) -> Harness:
    clock = Clock()
    queue = make_queue(clock)
    artifacts = ArtifactStore(tmp_path / "out")
    exporter = exporter or FakeExporter()
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return remote_response or httpx.Response(200, json={"ok": True})

    worker = ConversionWorker(
        queue=queue,
        exporter=exporter,
        converter=AssimpConverter(runner=assimp or FakeRunner([_assimp_writes_glb])),
        artifacts=artifacts,
        storage=StorageResolver(
            artifacts=artifacts,
            store_url=store_url,
            internal_key=internal_key,
            transport=httpx.MockTransport(handler),
        ),
        scratch=ScratchStore(tmp_path / "scratch"),
        compressor=compressor,
        clock=clock.now,
    )
    harness = Harness(worker=worker, queue=queue, clock=clock, root=tmp_path, exporter=exporter, requests=requests)

    original_update = queue.update_progress

    def record_progress(job_id: str, progress: int) -> None:
        harness.progress.append(progress)
        original_update(job_id, progress)

    queue.update_progress = record_progress  # type: ignore[method-assign]
    return harness


def test_skp_conversion_in_local_mode(tmp_path: Path) -> None:
    harness = _harness(tmp_path)
    upload = harness.submit()

    assert harness.run_once() is True

    job = harness.job()
    assert job.state is JobState.COMPLETED
    assert job.progress == 100
    assert job.result is not None
    assert job.result.glb_url == "/models/file-1/model.glb"
    assert job.result.output_path == str(harness.output_dir / "model.glb")
    assert (harness.output_dir / "model.glb").read_bytes() == GLB_BYTES
    assert (harness.output_dir / "model" / "wood.jpg").read_bytes() == b"jpg"
    assert not upload.exists()
    assert not harness.scratch_dir.exists()
    assert harness.progress == [10, 30, 40, 70]


def test_skp_conversion_in_remote_mode_uploads_and_cleans_up(tmp_path: Path) -> None:
    harness = _harness(
        tmp_path,
        store_url="http://main:5002/api/sketchup",
        internal_key="secret",
        remote_response=httpx.Response(200, json={"ok": True, "glbUrl": "https://cdn.example/x"}),
    )
    upload = harness.submit()

    harness.run_once()

    job = harness.job()
    assert job.state is JobState.COMPLETED
    assert job.result is not None
    assert job.result.glb_url == "https://cdn.example/x"
    assert len(harness.requests) == 1
    assert harness.requests[0].content == GLB_BYTES
    assert not harness.output_dir.exists()
    assert not harness.scratch_dir.exists()
    assert not upload.exists()


def test_remote_mode_without_key_fails_before_network_and_keeps_input(tmp_path: Path) -> None:
    harness = _harness(tmp_path, store_url="http://main:5002/api/sketchup")
    upload = harness.submit()

    harness.run_once()

    job = harness.job()
    assert job.state is JobState.PENDING
    assert job.attempts_made == 1
    assert "SKETCHUP_INTERNAL_KEY" in (job.failed_reason or "")
    assert harness.requests == []
    assert upload.exists()


def test_converter_failure_retries_and_deletes_input_only_after_last_attempt(tmp_path: Path) -> None:
    harness = _harness(tmp_path, assimp=FakeRunner([exit_with(1, stderr="assimp: no importer")]))
    upload = harness.submit()

    harness.run_once()
    assert harness.job().state is JobState.PENDING
    assert upload.exists()
    assert harness.scratch_dir.exists()

    harness.clock.advance(2)
    harness.run_once()
    assert harness.job().state is JobState.PENDING
    assert upload.exists()

    harness.clock.advance(4)
    harness.run_once()
    job = harness.job()
    assert job.state is JobState.FAILED
    assert job.attempts_made == 3
    assert "assimp: no importer" in (job.failed_reason or "")
    assert not upload.exists()
    assert not harness.scratch_dir.exists()
    assert len(harness.exporter.calls) == 3


def test_retry_is_not_picked_up_before_backoff_elapses(tmp_path: Path) -> None:
    harness = _harness(tmp_path, exporter=FakeExporter(error=ExternalToolError("SketchUp crashed")))
    harness.submit()

    assert harness.run_once() is True
    assert harness.run_once() is False

    harness.clock.advance(2)
    assert harness.run_once() is True


def test_store_only_job_copies_bytes_unchanged(tmp_path: Path) -> None:
    harness = _harness(tmp_path)
    upload = harness.submit("scene.glb", JobType.STORE, data=GLB_BYTES + b"trailing")

    harness.run_once(JobType.STORE)

    job = harness.job()
    assert job.state is JobState.COMPLETED
    assert (harness.output_dir / "model.glb").read_bytes() == GLB_BYTES + b"trailing"
    assert harness.exporter.calls == []
    assert not upload.exists()
    assert harness.progress == [20]


def test_non_skp_convert_job_skips_export_stage(tmp_path: Path) -> None:
    runner = FakeRunner([_assimp_writes_glb])
    harness = _harness(tmp_path, assimp=runner)
    upload = harness.submit("scene.dae")

    harness.run_once()

    assert harness.job().state is JobState.COMPLETED
    assert harness.exporter.calls == []
    assert runner.calls[0].command[2] == str(upload)
    assert runner.calls[0].cwd == upload.parent


def test_missing_input_fails_without_retry(tmp_path: Path) -> None:
    harness = _harness(tmp_path)
    upload = harness.submit()
    upload.unlink()

    harness.run_once()

    job = harness.job()
    assert job.state is JobState.FAILED
    assert job.attempts_made == 1
    assert "input file not found" in (job.failed_reason or "")


def test_compression_failure_does_not_fail_the_job(tmp_path: Path) -> None:
    compressor = DracoCompressor(runner=FakeRunner([exit_with(1, stderr="draco exploded")]))
    harness = _harness(tmp_path, compressor=compressor)
    harness.submit()

    harness.run_once()

    assert harness.job().state is JobState.COMPLETED
    assert (harness.output_dir / "model.glb").read_bytes() == GLB_BYTES


def test_invalid_glb_output_does_not_fail_the_job(tmp_path: Path) -> None:
    def writes_garbage(call: RecordedCall) -> ProcessResult:
        Path(call.command[3]).write_bytes(b"garbage")
        return ProcessResult(command=call.command, returncode=0)

    harness = _harness(tmp_path, assimp=FakeRunner([writes_garbage]))
    harness.submit()

    harness.run_once()

    assert harness.job().state is JobState.COMPLETED


@pytest.mark.parametrize("document", [{"materials": 5}, {"images": 3}, {"materials": {"name": "wood"}}])
def test_glb_with_malformed_json_properties_still_completes(tmp_path: Path, document: dict) -> None:
    def writes_odd_glb(call: RecordedCall) -> ProcessResult:
        Path(call.command[3]).write_bytes(build_glb(document))
        return ProcessResult(command=call.command, returncode=0)

    harness = _harness(tmp_path, assimp=FakeRunner([writes_odd_glb]))
    upload = harness.submit()

    harness.run_once()

    job = harness.job()
    assert job.state is JobState.COMPLETED
    assert job.attempts_made == 1
    assert not upload.exists()


def test_progress_is_reported_before_each_stage_runs(tmp_path: Path) -> None:
    seen: dict[str, int] = {}

    class ProgressAwareExporter(FakeExporter):
        async def export(self, input_path: Path, scratch: ScratchContext) -> Path:
            job = harness.queue.get_job("conv-1")
            assert job is not None
            seen["export"] = job.progress
            return await super().export(input_path, scratch)

    def assimp(call: RecordedCall) -> ProcessResult:
        job = harness.queue.get_job("conv-1")
        assert job is not None
        seen["convert"] = job.progress
        return _assimp_writes_glb(call)

    harness = _harness(tmp_path, exporter=ProgressAwareExporter(), assimp=FakeRunner([assimp]))
    harness.submit()

    harness.run_once()

    assert seen == {"export": 10, "convert": 30}
    assert harness.job().state is JobState.COMPLETED


def test_export_failure_leaves_exporting_progress_visible(tmp_path: Path) -> None:
    harness = _harness(tmp_path, exporter=FakeExporter(error=ExternalToolError("SketchUp crashed")))
    harness.submit()

    harness.run_once()

    assert harness.progress == [10]


def test_reaping_a_stalled_job_with_attempts_left_keeps_input(tmp_path: Path) -> None:
    harness = _harness(tmp_path)
    upload = harness.submit()
    harness.queue.acquire_next(JobType.CONVERT, now=harness.clock.now())
    harness.clock.advance(31 * 60)

    reaped = asyncio.run(harness.worker.reap_stalled())

    assert reaped == 1
    assert harness.job().state is JobState.PENDING
    assert upload.exists()


def test_reaping_a_stalled_job_without_attempts_left_deletes_input(tmp_path: Path) -> None:
    harness = _harness(tmp_path)
    upload = harness.submit()
    for _ in range(2):
        harness.queue.acquire_next(JobType.CONVERT, now=harness.clock.now())
        harness.queue.fail("conv-1", "boom")
        harness.clock.advance(60)
    harness.queue.acquire_next(JobType.CONVERT, now=harness.clock.now())
    harness.clock.advance(31 * 60)

    asyncio.run(harness.worker.reap_stalled())

    assert harness.job().state is JobState.FAILED
    assert not upload.exists()


def test_run_pool_processes_jobs_until_shutdown(tmp_path: Path) -> None:
    queue = make_queue()
    artifacts = ArtifactStore(tmp_path / "out")
    worker = ConversionWorker(
        queue=queue,
        exporter=FakeExporter(),
        converter=AssimpConverter(runner=FakeRunner([_assimp_writes_glb])),
        artifacts=artifacts,
        storage=StorageResolver(artifacts=artifacts),
        scratch=ScratchStore(tmp_path / "scratch"),
        poll_interval=0.01,
        concurrency=2,
    )
    upload = tmp_path / "scene.glb"
    upload.write_bytes(GLB_BYTES)
    queue.enqueue(
        JobType.STORE,
        ConversionJobPayload(file_id="file-1", conversion_id="conv-1", input_path=str(upload)),
    )

    async def scenario() -> None:
        shutdown = asyncio.Event()
        pool = asyncio.create_task(worker.run_pool(shutdown, reap_interval=0.01))
        for _ in range(200):
            job = queue.get_job("conv-1")
            if job is not None and job.state is JobState.COMPLETED:
                break
            await asyncio.sleep(0.01)
        shutdown.set()
        await asyncio.wait_for(pool, timeout=5)

    asyncio.run(scenario())

    job = queue.get_job("conv-1")
    assert job is not None
    assert job.state is JobState.COMPLETED
    assert not upload.exists()


def test_run_pool_survives_transient_queue_errors(tmp_path: Path) -> None:
    queue = make_queue()
    artifacts = ArtifactStore(tmp_path / "out")
    worker = ConversionWorker(
        queue=queue,
        exporter=FakeExporter(),
        converter=AssimpConverter(runner=FakeRunner([_assimp_writes_glb])),
        artifacts=artifacts,
        storage=StorageResolver(artifacts=artifacts),
        scratch=ScratchStore(tmp_path / "scratch"),
        poll_interval=0.01,
        concurrency=1,
    )
    failures = {"release_stalled": 1, "acquire_next": 1}

    def flaky(name: str):
        original = getattr(queue, name)

        def wrapper(*args, **kwargs):
            if failures[name]:
                failures[name] -= 1
                raise QueueUnavailableError(f"failed to {name}")
            return original(*args, **kwargs)

        return wrapper

    queue.release_stalled = flaky("release_stalled")  # type: ignore[method-assign]
    queue.acquire_next = flaky("acquire_next")  # type: ignore[method-assign]
    upload = tmp_path / "scene.glb"
    upload.write_bytes(GLB_BYTES)
    queue.enqueue(
        JobType.STORE,
        ConversionJobPayload(file_id="file-1", conversion_id="conv-1", input_path=str(upload)),
    )

    async def scenario() -> bool:
        shutdown = asyncio.Event()
        pool = asyncio.create_task(worker.run_pool(shutdown, reap_interval=0.01))
        for _ in range(300):
            job = queue.get_job("conv-1")
            if job is not None and job.state is JobState.COMPLETED:
                break
            await asyncio.sleep(0.01)
        alive = not pool.done()
        shutdown.set()
        await asyncio.wait_for(pool, timeout=5)
        return alive

    assert asyncio.run(scenario()) is True
    job = queue.get_job("conv-1")
    assert job is not None
    assert job.state is JobState.COMPLETED
    assert failures == {"release_stalled": 0, "acquire_next": 0}


@pytest.mark.parametrize("job_type", list(JobType))
def test_run_once_returns_false_when_queue_is_empty(tmp_path: Path, job_type: JobType) -> None:
    harness = _harness(tmp_path)

    assert harness.run_once(job_type) is False
