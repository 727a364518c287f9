"""External tool adapters used by the conversion worker."""

from .assimp import AssimpConverter, copy_texture_sidecar
from .base import SceneExporter
from .compression import DracoCompressor
from .factory import create_exporter
from .process import ProcessResult, ProcessRunner, run_process
from .sketchup_ruby import SketchupRubyExporter
from .sketchup_sdk import SketchupSdkExporter

__all__ = [
    "AssimpConverter",
    "DracoCompressor",
    "ProcessResult",
    "ProcessRunner",
    "SceneExporter",
    "SketchupRubyExporter",
    "SketchupSdkExporter",
    "copy_texture_sidecar",
    "create_exporter",
    "run_process",
]
