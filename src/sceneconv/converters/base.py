"""Abstract scene exporter definition."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from ..media.scratch import ScratchContext


class SceneExporter(ABC):
    """Turn an authoring-tool source file into an interchange mesh file."""

    name: str = "exporter"

    @abstractmethod
    async def export(self, input_path: Path, scratch: ScratchContext) -> Path:
        """Write the interchange file into ``scratch`` and return its path."""
