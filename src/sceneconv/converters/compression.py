"""Optional Draco geometry compression of a finished GLB."""

from __future__ import annotations

import contextlib
import logging
import os
from pathlib import Path

from ..exceptions import CompressionError, ExternalToolError
from .process import ProcessRunner, run_process

logger = logging.getLogger(__name__)

DRACO_COMPRESSION_LEVEL = 7
QUANTIZE_POSITION_BITS = 14
QUANTIZE_NORMAL_BITS = 10
QUANTIZE_TEXCOORD_BITS = 12


class DracoCompressor:
    """Replace a GLB in place with its Draco-compressed version, best-effort."""

    def __init__(
        self,
        *,
        binary: str = "gltf-pipeline",
        timeout_seconds: float = 5 * 60,
        runner: ProcessRunner = run_process,
    ) -> None:
        self.binary = binary
        self.timeout_seconds = timeout_seconds
        self._runner = runner

    def command_for(self, source: Path, target: Path) -> list[str]:
        return [
            self.binary,
            "-i",
            str(source),
            "-o",
            str(target),
            "-d",
            f"--draco.compressionLevel={DRACO_COMPRESSION_LEVEL}",
            f"--draco.quantizePositionBits={QUANTIZE_POSITION_BITS}",
            f"--draco.quantizeNormalBits={QUANTIZE_NORMAL_BITS}",
            f"--draco.quantizeTexcoordBits={QUANTIZE_TEXCOORD_BITS}",
        ]

    async def _run(self, path: Path, target: Path) -> None:
        result = await self._runner(self.command_for(path, target), timeout=self.timeout_seconds, cwd=path.parent)
        if not result.ok:
            raise CompressionError(f"gltf-pipeline failed: {result.describe()}")
        if not target.exists() or target.stat().st_size == 0:
            raise CompressionError("gltf-pipeline produced an empty container")

    async def compress(self, path: Path) -> bool:
        """Return ``True`` when ``path`` now holds the compressed container.

        Any failure is logged and leaves the original file untouched.
        """
        target = path.with_name(f"{path.stem}.draco{path.suffix}")
        try:
            original_size = path.stat().st_size
            await self._run(path, target)
            os.replace(target, path)
            compressed_size = path.stat().st_size
        except (CompressionError, ExternalToolError, OSError) as exc:
            logger.warning("compress.draco.skipped", extra={"path": str(path), "error": str(exc)})
            with contextlib.suppress(FileNotFoundError):
                target.unlink()
            return False

        logger.info(
            "compress.draco.completed",
            extra={
                "path": str(path),
                "original_bytes": original_size,
                "compressed_bytes": compressed_size,
                "ratio": round(compressed_size / original_size, 3) if original_size else None,
            },
        )
        return True


__all__ = ["DracoCompressor"]
