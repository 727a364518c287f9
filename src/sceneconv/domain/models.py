"""Domain models for scene conversion jobs.

Payloads and results cross process boundaries (queue rows, HTTP bodies) and
are pydantic models with the camelCase wire names used by the upload
collaborator. Queue bookkeeping stays in plain dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class JobType(str, Enum):
    """Job names registered with the queue."""

    CONVERT = "convert-skp-to-glb"
    STORE = "store-glb"


class JobState(str, Enum):
    """Queue states observable by status pollers."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class BackoffType(str, Enum):
    FIXED = "fixed"
    EXPONENTIAL = "exponential"


class ConversionJobPayload(BaseModel):
    """Job submission contract consumed from the upload collaborator."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    file_id: str = Field(alias="fileId", min_length=1)
    conversion_id: str = Field(alias="conversionId", min_length=1)
    input_path: str = Field(alias="inputPath", min_length=1)
    original_filename: str = Field(default="", alias="originalFilename")

    @property
    def source_extension(self) -> str:
        """Lower-cased extension, preferring the original upload name."""
        return Path(self.original_filename or self.input_path).suffix.lower()


class ConversionResult(BaseModel):
    """Terminal payload stored on completed jobs."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    file_id: str = Field(alias="fileId")
    conversion_id: str = Field(alias="conversionId")
    glb_url: str = Field(alias="glbUrl")
    output_path: str = Field(alias="outputPath")


@dataclass(slots=True, frozen=True)
class JobOptions:
    """Per-job retry policy; defaults mirror the queue defaults."""

    job_id: str | None = None
    attempts: int = 3
    backoff_type: BackoffType = BackoffType.EXPONENTIAL
    backoff_delay_seconds: float = 2.0

    def backoff_for(self, attempts_made: int) -> float:
        """Delay before the next attempt once ``attempts_made`` have failed."""
        if self.backoff_type is BackoffType.FIXED:
            return self.backoff_delay_seconds
        return self.backoff_delay_seconds * (2 ** max(attempts_made - 1, 0))


@dataclass(slots=True)
class QueuedJob:
    """Snapshot of a queue row."""

    id: str
    job_type: JobType
    payload: ConversionJobPayload
    state: JobState
    progress: int
    attempts_made: int
    max_attempts: int
    backoff_type: BackoffType
    backoff_delay_seconds: float
    available_at: datetime
    created_at: datetime
    updated_at: datetime
    lease_expires_at: datetime | None = None
    finished_at: datetime | None = None
    result: ConversionResult | None = None
    failed_reason: str | None = None

    @property
    def is_final_attempt(self) -> bool:
        return self.attempts_made + 1 >= max(self.max_attempts, 1)

    @property
    def options(self) -> JobOptions:
        return JobOptions(
            job_id=self.id,
            attempts=self.max_attempts,
            backoff_type=self.backoff_type,
            backoff_delay_seconds=self.backoff_delay_seconds,
        )
