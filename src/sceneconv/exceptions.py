"""Error taxonomy shared by the conversion pipeline."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import exc as sa_exc

__all__ = [
    "PipelineError",
    "InputMissingError",
    "ExternalToolError",
    "ToolTimeoutError",
    "ExportOutputMissingError",
    "ValidationWarning",
    "CompressionError",
    "RemoteStoreConfigError",
    "RemoteStoreError",
    "UnsupportedSourceError",
    "QueueUnavailableError",
    "handle_sqlalchemy_errors",
]


class PipelineError(Exception):
    """Base class for conversion pipeline failures.

    ``retryable`` tells the queue whether another attempt may succeed. Errors
    that cannot be fixed by waiting go straight to the ``failed`` state.
    """

    retryable: bool = True


class InputMissingError(PipelineError):
    """Raised when the uploaded source file is gone before a stage runs."""

    retryable = False


class ExternalToolError(PipelineError):
    """Raised when an external converter fails or produces nothing."""


class ToolTimeoutError(ExternalToolError):
    """Raised when an external process exceeds its wall-clock budget."""


class ExportOutputMissingError(ExternalToolError):
    """Raised when the authoring tool exits cleanly without writing output."""


class ValidationWarning(PipelineError):
    """Raised by the GLB inspector; callers log it and carry on."""


class CompressionError(PipelineError):
    """Raised by the compression pass; callers keep the original container."""


class RemoteStoreConfigError(PipelineError):
    """Raised when the remote store is enabled without an internal key."""


class RemoteStoreError(PipelineError):
    """Raised when the remote store rejects an upload."""

    def __init__(self, message: str, *, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class UnsupportedSourceError(PipelineError):
    """Raised when a submitted file has an extension the pipeline cannot handle."""

    retryable = False


class QueueUnavailableError(RuntimeError):
    """Raised when the queue backend cannot be reached or rejects a statement."""


@contextmanager
def handle_sqlalchemy_errors(operation: str) -> Iterator[None]:
    """Translate SQLAlchemy errors into :class:`QueueUnavailableError`."""

    try:
        yield
    except sa_exc.SQLAlchemyError as exc:
        raise QueueUnavailableError(f"failed to {operation}") from exc
