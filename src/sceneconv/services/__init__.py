"""Submission and status contracts for the conversion queue."""

from .status import ConversionStatus, describe_conversion
from .submission import SubmissionReceipt, job_type_for, submit_conversion

__all__ = [
    "ConversionStatus",
    "SubmissionReceipt",
    "describe_conversion",
    "job_type_for",
    "submit_conversion",
]
