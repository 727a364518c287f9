from __future__ import annotations

from pathlib import Path

import pytest

from src.sceneconv.domain.models import JobState, JobType
from src.sceneconv.exceptions import UnsupportedSourceError
from src.sceneconv.services.status import describe_conversion
from src.sceneconv.services.submission import job_type_for, submit_conversion
from tests.helpers.fakes import make_queue


@pytest.mark.parametrize(
    ("filename", "expected"),
    [("House.SKP", JobType.CONVERT), ("scene.glb", JobType.STORE)],
)
def test_job_type_follows_extension(filename: str, expected: JobType) -> None:
    assert job_type_for(filename) is expected


def test_submission_renames_temp_file_and_enqueues(tmp_path: Path) -> None:
    queue = make_queue()
    temp = tmp_path / "upload-8f3a"
    temp.write_bytes(b"skp")

    receipt = submit_conversion(queue, temp, "House.skp", file_id="file-1", conversion_id="conv-1")

    assert receipt.model_dump(by_alias=True) == {
        "fileId": "file-1",
        "conversionId": "conv-1",
        "jobType": JobType.CONVERT,
        "status": "pending",
    }
    job = queue.get_job("conv-1")
    assert job is not None
    assert job.payload.input_path == str(tmp_path / "upload-8f3a.skp")
    assert job.payload.original_filename == "House.skp"
    assert (tmp_path / "upload-8f3a.skp").read_bytes() == b"skp"
    assert not temp.exists()


def test_submission_generates_identifiers(tmp_path: Path) -> None:
    queue = make_queue()
    temp = tmp_path / "scene.glb"
    temp.write_bytes(b"glb")

    receipt = submit_conversion(queue, temp, "scene.glb")

    assert receipt.file_id and receipt.conversion_id
    assert receipt.job_type is JobType.STORE
    job = queue.get_job(receipt.conversion_id)
    assert job is not None
    assert job.payload.input_path == str(temp)


def test_unsupported_extension_is_rejected_without_enqueueing(tmp_path: Path) -> None:
    queue = make_queue()
    temp = tmp_path / "upload"
    temp.write_bytes(b"zip")

    with pytest.raises(UnsupportedSourceError):
        submit_conversion(queue, temp, "archive.zip")

    assert queue.list_jobs() == []
    assert temp.exists()


def test_describe_conversion_maps_queue_states(tmp_path: Path) -> None:
    queue = make_queue()
    temp = tmp_path / "upload"
    temp.write_bytes(b"skp")
    receipt = submit_conversion(queue, temp, "house.skp")

    assert describe_conversion(queue, "unknown") is None
    pending = describe_conversion(queue, receipt.conversion_id)
    assert pending is not None and pending.status == "pending"

    queue.acquire_next(JobType.CONVERT)
    processing = describe_conversion(queue, receipt.conversion_id)
    assert processing is not None and processing.status == "processing"

    queue.fail(receipt.conversion_id, "SketchUp export failed", retryable=False)
    failed = describe_conversion(queue, receipt.conversion_id)
    assert failed is not None
    assert failed.status == "failed"
    assert failed.error == "SketchUp export failed"
    assert queue.get_job(receipt.conversion_id).state is JobState.FAILED  # type: ignore[union-attr]
