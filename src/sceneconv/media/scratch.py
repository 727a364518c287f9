"""Per-job scratch directories for intermediate export files."""

from __future__ import annotations

import contextlib
import logging
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

SCRATCH_NAMESPACE = "sceneconv"
INTERCHANGE_STEM = "model"

_SAFE_SEGMENT = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def safe_segment(value: str, *, name: str) -> str:
    """Reject identifiers that could escape their parent directory."""
    if not _SAFE_SEGMENT.match(value) or ".." in value:
        raise ValueError(f"{name} {value!r} is not a safe path segment")
    return value


@dataclass(slots=True, frozen=True)
class ScratchContext:
    """Private working directory of one ``(file_id, conversion_id)`` execution.

    The authoring tool writes ``model.<ext>`` here and drops texture images
    into a ``model/`` directory beside it.
    """

    file_id: str
    conversion_id: str
    directory: Path

    def interchange_path(self, extension: str = "dae") -> Path:
        return self.directory / f"{INTERCHANGE_STEM}.{extension.lstrip('.')}"

    @property
    def texture_dir(self) -> Path:
        return self.directory / INTERCHANGE_STEM

    def reset_outputs(self, extension: str = "dae") -> None:
        """Drop the interchange file and textures written by an earlier run."""
        with contextlib.suppress(FileNotFoundError):
            self.interchange_path(extension).unlink()
        shutil.rmtree(self.texture_dir, ignore_errors=True)


@dataclass(slots=True)
class ScratchStore:
    """Creates and removes scratch directories under ``root``.

    Layout: ``<root>/sceneconv/<file_id>/<conversion_id>``. Each identifier is
    its own path segment, so distinct pairs never share a directory.
    """

    root: Path
    log: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))

    @property
    def base(self) -> Path:
        return self.root / SCRATCH_NAMESPACE

    def scratch_dir(self, file_id: str, conversion_id: str) -> Path:
        file_part = safe_segment(file_id, name="file_id")
        conversion_part = safe_segment(conversion_id, name="conversion_id")
        return self.base / file_part / conversion_part

    def context_for(self, file_id: str, conversion_id: str) -> ScratchContext:
        return ScratchContext(
            file_id=file_id,
            conversion_id=conversion_id,
            directory=self.scratch_dir(file_id, conversion_id),
        )

    def ensure(self, file_id: str, conversion_id: str) -> ScratchContext:
        context = self.context_for(file_id, conversion_id)
        context.directory.mkdir(parents=True, exist_ok=True)
        return context

    def remove(self, file_id: str, conversion_id: str) -> bool:
        directory = self.scratch_dir(file_id, conversion_id)
        if not self.discard(directory):
            return False
        self.log.info(
            "scratch.removed",
            extra={"file_id": file_id, "conversion_id": conversion_id, "path": str(directory)},
        )
        return True

    def discard(self, directory: Path) -> bool:
        """Delete one scratch directory and its file-level parent once empty."""
        if not directory.exists():
            return False
        shutil.rmtree(directory, ignore_errors=True)
        with contextlib.suppress(OSError):
            directory.parent.rmdir()
        return True

    def iter_directories(self) -> Iterator[Path]:
        """Yield every per-conversion scratch directory currently on disk."""
        if not self.base.is_dir():
            return
        for file_dir in sorted(self.base.iterdir()):
            if not file_dir.is_dir():
                continue
            for entry in sorted(file_dir.iterdir()):
                if entry.is_dir():
                    yield entry


__all__ = ["ScratchContext", "ScratchStore", "safe_segment", "SCRATCH_NAMESPACE"]
