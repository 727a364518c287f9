"""Domain models for the conversion pipeline."""

from .models import (
    BackoffType,
    ConversionJobPayload,
    ConversionResult,
    JobOptions,
    JobState,
    JobType,
    QueuedJob,
)

__all__ = [
    "BackoffType",
    "ConversionJobPayload",
    "ConversionResult",
    "JobOptions",
    "JobState",
    "JobType",
    "QueuedJob",
]
