"""Turn an uploaded temp file into a queued conversion job."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from ..domain.models import ConversionJobPayload, JobType
from ..exceptions import UnsupportedSourceError
from ..infrastructure.queue import PostgresJobQueue

logger = logging.getLogger(__name__)

JOB_TYPE_BY_EXTENSION: dict[str, JobType] = {
    ".skp": JobType.CONVERT,
    ".glb": JobType.STORE,
}


class SubmissionReceipt(BaseModel):
    """Identifiers handed back to the uploader for status polling."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    file_id: str = Field(alias="fileId")
    conversion_id: str = Field(alias="conversionId")
    job_type: JobType = Field(alias="jobType")
    status: str = "pending"


def job_type_for(filename: str) -> JobType:
    extension = Path(filename).suffix.lower()
    try:
        return JOB_TYPE_BY_EXTENSION[extension]
    except KeyError:
        raise UnsupportedSourceError(
            f"unsupported file type {extension or '<none>'!r}; expected .skp or .glb"
        ) from None


def submit_conversion(
    queue: PostgresJobQueue,
    input_path: Path,
    original_filename: str,
    *,
    file_id: str | None = None,
    conversion_id: str | None = None,
) -> SubmissionReceipt:
    """Enqueue ``input_path`` under the job type its extension calls for.

    Upload temp files usually lack an extension; the file is renamed to carry
    the original one so the tools downstream recognise the format.
    """

    job_type = job_type_for(original_filename)
    extension = Path(original_filename).suffix.lower()
    if input_path.suffix.lower() != extension:
        renamed = input_path.with_name(input_path.name + extension)
        os.replace(input_path, renamed)
        input_path = renamed

    payload = ConversionJobPayload(
        file_id=file_id or uuid4().hex,
        conversion_id=conversion_id or uuid4().hex,
        input_path=str(input_path),
        original_filename=original_filename,
    )
    job = queue.enqueue(job_type, payload, queue.default_options(job_id=payload.conversion_id))
    logger.info(
        "submission.enqueued",
        extra={
            "file_id": payload.file_id,
            "conversion_id": payload.conversion_id,
            "job_type": job_type.value,
        },
    )
    return SubmissionReceipt(
        file_id=payload.file_id,
        conversion_id=job.id,
        job_type=job_type,
        status=job.state.value,
    )


__all__ = ["JOB_TYPE_BY_EXTENSION", "SubmissionReceipt", "job_type_for", "submit_conversion"]
