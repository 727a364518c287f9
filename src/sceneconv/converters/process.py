"""Async subprocess helper shared by the external tool adapters."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Mapping, Protocol, Sequence

from ..exceptions import ExternalToolError, ToolTimeoutError

logger = logging.getLogger(__name__)

OUTPUT_TAIL_CHARS = 4_000


@dataclass(slots=True, frozen=True)
class ProcessResult:
    """Captured outcome of one external process run."""

    command: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def describe(self) -> str:
        """Return the exit code plus the tail of both output streams."""
        return (
            f"exit code {self.returncode}\n"
            f"stdout:\n{self.stdout[-OUTPUT_TAIL_CHARS:]}\n"
            f"stderr:\n{self.stderr[-OUTPUT_TAIL_CHARS:]}"
        )


class ProcessRunner(Protocol):
    def __call__(
        self,
        command: Sequence[str],
        *,
        timeout: float,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> Awaitable[ProcessResult]: ...


async def run_process(
    command: Sequence[str],
    *,
    timeout: float,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> ProcessResult:
    """Run ``command`` without a shell and wait at most ``timeout`` seconds.

    Launch failures and timeouts raise :class:`ExternalToolError` subclasses;
    a non-zero exit code is returned to the caller, which decides whether the
    tool's output is still usable.
    """
    argv = tuple(str(part) for part in command)
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd) if cwd is not None else None,
            env=dict(env) if env is not None else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise ExternalToolError(f"failed to launch {argv[0]}: {exc}") from exc

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        await _terminate(process)
        raise ToolTimeoutError(f"{argv[0]} timed out after {timeout:.0f}s") from exc
    except asyncio.CancelledError:
        await _terminate(process)
        raise

    result = ProcessResult(
        command=argv,
        returncode=process.returncode if process.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
    logger.debug(
        "process.finished",
        extra={"command": argv[0], "returncode": result.returncode, "cwd": str(cwd or "")},
    )
    return result


async def _terminate(process: asyncio.subprocess.Process) -> None:
    with contextlib.suppress(ProcessLookupError):
        process.kill()
    with contextlib.suppress(ProcessLookupError):
        await process.wait()


__all__ = ["ProcessResult", "ProcessRunner", "run_process"]
