"""Wrapper around a user-provided SketchUp C SDK converter executable."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Mapping, Sequence

from ..config import normalize_env_path
from ..exceptions import ExternalToolError, InputMissingError
from ..media.scratch import ScratchContext
from .base import SceneExporter
from .process import ProcessRunner, run_process

logger = logging.getLogger(__name__)

DEFAULT_ARGS_TEMPLATE: tuple[str, ...] = ("{input}", "{output}", "{format}")
SUPPORTED_FORMATS = frozenset({"obj", "dae"})


def parse_args_template(raw: str | None) -> tuple[str, ...]:
    if raw is None or not raw.strip():
        return DEFAULT_ARGS_TEMPLATE
    try:
        parsed = json.loads(raw)
    except ValueError as exc:
        raise ExternalToolError(f"SKETCHUP_CSDK_ARGS_JSON is not valid JSON: {exc}") from exc
    if not isinstance(parsed, list) or not all(isinstance(item, str) for item in parsed):
        raise ExternalToolError("SKETCHUP_CSDK_ARGS_JSON must be a JSON array of strings")
    return tuple(parsed)


def render_args(template: Sequence[str], variables: Mapping[str, str]) -> list[str]:
    rendered = []
    for item in template:
        for key, value in variables.items():
            item = item.replace("{" + key + "}", value)
        rendered.append(item)
    return rendered


class SketchupSdkExporter(SceneExporter):
    """Run an external C SDK converter that writes ``model.<format>``.

    The converter runs with the scratch directory as its working directory and
    is expected to place texture images under ``model/`` beside its output.
    """

    name = "sdk"

    def __init__(
        self,
        *,
        binary: str | None,
        args_json: str | None = None,
        output_format: str = "dae",
        dyld_framework_path: str | None = None,
        timeout_seconds: float = 10 * 60,
        runner: ProcessRunner = run_process,
    ) -> None:
        if output_format not in SUPPORTED_FORMATS:
            raise ValueError(f"Unsupported SDK output format '{output_format}'")
        self.binary = normalize_env_path(binary) if binary else ""
        self.args_template = parse_args_template(args_json)
        self.output_format = output_format
        self.dyld_framework_path = dyld_framework_path
        self.timeout_seconds = timeout_seconds
        self._runner = runner

    async def export(self, input_path: Path, scratch: ScratchContext) -> Path:
        if not input_path.exists():
            raise InputMissingError(f"input file not found: {input_path}")
        if not self.binary:
            raise ExternalToolError(
                "SKETCHUP_CONVERTER=sdk requires SKETCHUP_CSDK_BIN to name the converter executable"
            )
        scratch.directory.mkdir(parents=True, exist_ok=True)

        out_dir = str(scratch.directory)
        args = render_args(
            self.args_template,
            {"input": str(input_path), "output": out_dir, "outDir": out_dir, "format": self.output_format},
        )
        env = dict(os.environ)
        if self.dyld_framework_path:
            env["DYLD_FRAMEWORK_PATH"] = self.dyld_framework_path

        command = [self.binary, *args]
        scratch.reset_outputs(self.output_format)
        result = await self._runner(command, timeout=self.timeout_seconds, cwd=scratch.directory, env=env)
        if not result.ok:
            raise ExternalToolError(
                f"SketchUp C SDK converter failed\nbin: {self.binary}\nargs: {json.dumps(args)}\n"
                f"{result.describe()}"
            )

        output_path = scratch.interchange_path(self.output_format)
        if not output_path.exists():
            raise ExternalToolError(f"SketchUp C SDK converter wrote no {output_path.name} in {out_dir}")
        logger.info("export.sdk.completed", extra={"output": str(output_path)})
        return output_path


__all__ = ["SketchupSdkExporter", "parse_args_template", "render_args"]
