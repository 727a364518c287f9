"""Assimp command-line adapter for interchange mesh → GLB conversion."""

from __future__ import annotations

import contextlib
import logging
import shutil
from pathlib import Path

from ..exceptions import ExternalToolError, InputMissingError
from .process import ProcessRunner, run_process

logger = logging.getLogger(__name__)


class AssimpConverter:
    def __init__(
        self,
        *,
        binary: str = "assimp",
        output_format: str = "glb2",
        timeout_seconds: float = 10 * 60,
        runner: ProcessRunner = run_process,
    ) -> None:
        self.binary = binary
        self.output_format = output_format
        self.timeout_seconds = timeout_seconds
        self._runner = runner

    async def convert(self, source: Path, output_path: Path, *, working_dir: Path) -> Path:
        """Run ``assimp export`` and verify the container was written.

        Assimp can exit 0 without writing anything, so any earlier container
        at ``output_path`` is removed first and the output is checked even on
        success.
        """
        if not source.exists():
            raise InputMissingError(f"conversion source not found: {source}")
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with contextlib.suppress(FileNotFoundError):
            output_path.unlink()

        command = [self.binary, "export", str(source), str(output_path), f"-f{self.output_format}"]
        result = await self._runner(command, timeout=self.timeout_seconds, cwd=working_dir)
        if not result.ok:
            raise ExternalToolError(f"assimp conversion failed: {result.describe()}")
        if not output_path.exists() or output_path.stat().st_size == 0:
            raise ExternalToolError(f"assimp reported success but produced no output: {output_path}")

        logger.info(
            "convert.assimp.completed",
            extra={"source": str(source), "output": str(output_path), "size_bytes": output_path.stat().st_size},
        )
        return output_path


def copy_texture_sidecar(source_dir: Path, dest_dir: Path) -> int:
    """Copy exported texture images next to the container; return the file count.

    A missing source directory is not an error (untextured models have none).
    Copy failures are logged and reported as zero copied files.
    """
    if not source_dir.is_dir():
        logger.info("convert.textures.none", extra={"source": str(source_dir)})
        return 0

    sources = sorted(path.name for path in source_dir.iterdir() if path.is_file())
    logger.info(
        "convert.textures.found",
        extra={"source": str(source_dir), "count": len(sources), "sample": sources[:5]},
    )
    try:
        shutil.copytree(source_dir, dest_dir, dirs_exist_ok=True)
    except OSError as exc:
        logger.warning(
            "convert.textures.copy_failed",
            extra={"source": str(source_dir), "dest": str(dest_dir), "error": str(exc)},
        )
        return 0

    copied = sum(1 for path in dest_dir.iterdir() if path.is_file())
    logger.info("convert.textures.copied", extra={"dest": str(dest_dir), "count": copied})
    return copied


__all__ = ["AssimpConverter", "copy_texture_sidecar"]
