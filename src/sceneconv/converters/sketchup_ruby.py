"""Drive the SketchUp desktop app headlessly through a Ruby startup script.

SketchUp has no documented batch mode. The exporter writes a small Ruby script
that opens the model, logs its material inventory, exports Collada and quits,
then launches the app with that script as its ``RubyStartup`` argument.
Command-line flags differ between releases and platforms, so several
invocations are tried in order until one produces the interchange file.
"""

from __future__ import annotations

import contextlib
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from ..config import normalize_env_path
from ..exceptions import ExportOutputMissingError, ExternalToolError, InputMissingError
from ..media.scratch import ScratchContext
from .base import SceneExporter
from .process import ProcessRunner, run_process

logger = logging.getLogger(__name__)

MACOS_OPEN = "/usr/bin/open"
BUNDLE_MARKER = "/Contents/MacOS/"
ENV_INPUT = "SKP_INPUT"
ENV_OUTPUT = "DAE_OUTPUT"
ENV_LOG = "SCENECONV_EXPORT_LOG"

RUBY_EXPORT_SCRIPT = """\
begin
  def sceneconv_log(msg)
    path = ENV["SCENECONV_EXPORT_LOG"]
    return if path.nil? || path.empty?
    File.open(path, "a") { |f| f.puts(msg.to_s) }
  rescue
  end

  input = ENV["SKP_INPUT"]
  output = ENV["DAE_OUTPUT"]
  sceneconv_log("BEGIN input=#{input} output=#{output}")
  if input.nil? || input.empty? || output.nil? || output.empty?
    sceneconv_log("Missing SKP_INPUT or DAE_OUTPUT")
    puts "Missing SKP_INPUT or DAE_OUTPUT"
    Sketchup.quit
  end

  Sketchup.open_file(input)
  model = Sketchup.active_model

  options = {
    :triangulated_faces => true,
    :doublesided_faces => true
  }

  materials = model.materials
  sceneconv_log("Materials count: #{materials.length}")
  materials.each_with_index do |mat, idx|
    if mat.texture
      sceneconv_log("Material[#{idx}] '#{mat.name}' has texture: #{mat.texture.filename rescue 'unknown'}")
    else
      sceneconv_log("Material[#{idx}] '#{mat.name}' has NO texture (color only)")
    end
  end

  ok = model.export(output, options)
  sceneconv_log(ok ? "EXPORT_OK" : "EXPORT_FAIL")
  puts(ok ? "EXPORT_OK" : "EXPORT_FAIL")
rescue => e
  sceneconv_log("EXPORT_ERROR: #{e}")
  puts "EXPORT_ERROR: #{e}"
ensure
  begin
    Sketchup.active_model.close(true) rescue nil
  rescue
  end
  sceneconv_log("QUIT")
  Sketchup.quit
end
"""


@dataclass(slots=True, frozen=True)
class InvocationStrategy:
    label: str
    command: tuple[str, ...]


def derive_app_bundle(app_path: str) -> str | None:
    """Return ``/…/SketchUp.app`` when ``app_path`` points inside a bundle."""
    index = app_path.find(BUNDLE_MARKER)
    if index <= 0:
        return None
    bundle = app_path[:index]
    return bundle if bundle.endswith(".app") else None


def build_invocation_strategies(
    app_path: str, input_path: Path, script_path: Path
) -> list[InvocationStrategy]:
    """Ordered launch commands; bundle launches via ``open`` come first.

    Passing the model file as an argument skips the template chooser that a
    bare launch would show.
    """
    source = str(input_path)
    script = str(script_path)
    strategies: list[InvocationStrategy] = []

    bundle = derive_app_bundle(app_path)
    if bundle:
        open_base = (MACOS_OPEN, "-W", "-n", "-a", bundle)
        strategies.extend(
            [
                InvocationStrategy(
                    "open -W -n -a <SketchUp.app> <file.skp> --args -RubyStartup",
                    (*open_base, source, "--args", "-RubyStartup", script),
                ),
                InvocationStrategy(
                    "open -W -n -a <SketchUp.app> <file.skp> --args --RubyStartup",
                    (*open_base, source, "--args", "--RubyStartup", script),
                ),
                InvocationStrategy(
                    "open -W -n -a <SketchUp.app> --args <file.skp> -RubyStartup",
                    (*open_base, "--args", source, "-RubyStartup", script),
                ),
            ]
        )

    for flag in ("-RubyStartup", "--RubyStartup", "-rubyStartup"):
        strategies.append(
            InvocationStrategy(f"<SketchUp> <file.skp> {flag}", (app_path, source, flag, script))
        )
    return strategies


class SketchupRubyExporter(SceneExporter):
    """Export ``.skp`` to Collada by scripting the SketchUp application."""

    name = "ruby"

    def __init__(
        self,
        *,
        app_path: str,
        timeout_seconds: float = 5 * 60,
        runner: ProcessRunner = run_process,
    ) -> None:
        self.app_path = normalize_env_path(app_path)
        self.timeout_seconds = timeout_seconds
        self._runner = runner

    def _check_preconditions(self, input_path: Path) -> None:
        if not input_path.exists():
            raise InputMissingError(f"input file not found: {input_path}")
        if not self.app_path or not Path(self.app_path).exists():
            raise ExternalToolError(
                f"SketchUp application not found: {self.app_path or '<empty>'}; "
                "set SKETCHUP_APP_PATH to the SketchUp executable"
            )

    async def export(self, input_path: Path, scratch: ScratchContext) -> Path:
        self._check_preconditions(input_path)
        scratch.directory.mkdir(parents=True, exist_ok=True)

        output_path = scratch.interchange_path("dae")
        token = uuid4().hex
        script_path = scratch.directory / f"export-{token}.rb"
        log_path = scratch.directory / f"export-{token}.log"
        script_path.write_text(RUBY_EXPORT_SCRIPT, encoding="utf-8")

        env = dict(os.environ)
        env.update({ENV_INPUT: str(input_path), ENV_OUTPUT: str(output_path), ENV_LOG: str(log_path)})

        failures: list[str] = []
        clean_exit_without_output = False
        try:
            for strategy in build_invocation_strategies(self.app_path, input_path, script_path):
                scratch.reset_outputs("dae")
                try:
                    result = await self._runner(
                        strategy.command,
                        timeout=self.timeout_seconds,
                        cwd=scratch.directory,
                        env=env,
                    )
                except ExternalToolError as exc:
                    failures.append(f"[{strategy.label}] {exc}")
                    logger.warning(
                        "export.strategy.failed",
                        extra={"strategy": strategy.label, "error": str(exc)},
                    )
                    continue

                if not result.ok:
                    failures.append(f"[{strategy.label}] {result.describe()}")
                    logger.warning(
                        "export.strategy.failed",
                        extra={"strategy": strategy.label, "returncode": result.returncode},
                    )
                    continue

                if output_path.exists():
                    logger.info(
                        "export.completed",
                        extra={"strategy": strategy.label, "output": str(output_path)},
                    )
                    return output_path

                clean_exit_without_output = True
                failures.append(f"[{strategy.label}] exited cleanly but wrote no {output_path.name}")
                logger.warning("export.strategy.no_output", extra={"strategy": strategy.label})

            if clean_exit_without_output:
                raise ExportOutputMissingError(
                    f"SketchUp export produced no output: {output_path}\n"
                    f"script log:\n{_read_log(log_path)}"
                )
            raise ExternalToolError("SketchUp export failed:\n" + "\n".join(failures))
        finally:
            for path in (script_path, log_path):
                with contextlib.suppress(FileNotFoundError):
                    path.unlink()


def _read_log(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8", errors="replace").strip() or "<empty>"
    except OSError:
        return "<unavailable>"


__all__ = [
    "InvocationStrategy",
    "SketchupRubyExporter",
    "build_invocation_strategies",
    "derive_app_bundle",
]
