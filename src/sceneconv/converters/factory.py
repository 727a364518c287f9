"""Factory for scene exporters."""

from __future__ import annotations

from ..config import ToolPaths
from .base import SceneExporter
from .process import ProcessRunner, run_process
from .sketchup_ruby import SketchupRubyExporter
from .sketchup_sdk import SketchupSdkExporter


def create_exporter(tools: ToolPaths, *, runner: ProcessRunner = run_process) -> SceneExporter:
    """Instantiate the exporter named by ``tools.exporter``."""
    name = tools.exporter.lower()
    if name == "ruby":
        return SketchupRubyExporter(
            app_path=tools.sketchup_app_path,
            timeout_seconds=tools.export_timeout_seconds,
            runner=runner,
        )
    if name == "sdk":
        return SketchupSdkExporter(
            binary=tools.csdk_bin,
            args_json=tools.csdk_args_json,
            output_format=tools.csdk_format,
            dyld_framework_path=tools.csdk_dyld_framework_path,
            timeout_seconds=tools.sdk_timeout_seconds,
            runner=runner,
        )
    raise ValueError(f"Unsupported exporter '{tools.exporter}'")
