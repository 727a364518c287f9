"""Map queue job state onto the status contract polled by clients."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from ..domain.models import JobState
from ..infrastructure.queue import PostgresJobQueue

StatusName = Literal["pending", "processing", "completed", "failed"]


class ConversionStatus(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: StatusName
    progress: int | None = None
    glb_url: str | None = Field(default=None, alias="glbUrl")
    error: str | None = None


def describe_conversion(queue: PostgresJobQueue, conversion_id: str) -> ConversionStatus | None:
    """Return the status of ``conversion_id`` or ``None`` when it is unknown."""

    job = queue.get_job(conversion_id)
    if job is None:
        return None
    if job.state is JobState.COMPLETED:
        return ConversionStatus(
            status="completed",
            progress=100,
            glb_url=job.result.glb_url if job.result is not None else None,
        )
    if job.state is JobState.FAILED:
        return ConversionStatus(status="failed", error=job.failed_reason or "conversion failed")
    if job.state is JobState.ACTIVE:
        return ConversionStatus(status="processing", progress=job.progress)
    return ConversionStatus(status="pending", progress=job.progress)


__all__ = ["ConversionStatus", "describe_conversion"]
