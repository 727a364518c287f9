"""Application configuration builder."""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

DEFAULT_SKETCHUP_APP_PATH = "/Applications/SketchUp 2024/SketchUp.app/Contents/MacOS/SketchUp"


@dataclass(slots=True, frozen=True)
class QueueSettings:
    dsn: str
    default_attempts: int = 3
    backoff_delay_seconds: float = 2.0
    statement_timeout_ms: int = 5_000
    retained_finished_jobs: int = 1000


@dataclass(slots=True, frozen=True)
class ToolPaths:
    assimp_path: str
    assimp_format: str
    sketchup_app_path: str
    exporter: str
    gltf_pipeline_path: str
    csdk_bin: str | None = None
    csdk_args_json: str | None = None
    csdk_format: str = "dae"
    csdk_dyld_framework_path: str | None = None
    export_timeout_seconds: float = 5 * 60
    sdk_timeout_seconds: float = 10 * 60
    convert_timeout_seconds: float = 10 * 60
    compress_timeout_seconds: float = 5 * 60


@dataclass(slots=True, frozen=True)
class StorageSettings:
    output_root: Path
    scratch_root: Path
    public_prefix: str = "/models"
    store_url: str | None = None
    internal_key: str | None = None
    upload_timeout_seconds: float = 120.0

    @property
    def remote_enabled(self) -> bool:
        return bool(self.store_url)


@dataclass(slots=True, frozen=True)
class WorkerSettings:
    concurrency: int = 4
    poll_interval_seconds: float = 1.0
    lease_seconds: float = 30 * 60
    enable_draco: bool = False


@dataclass(slots=True, frozen=True)
class AppConfig:
    queue: QueueSettings
    tools: ToolPaths
    storage: StorageSettings
    worker: WorkerSettings
    log_level: str = "INFO"


def normalize_env_path(raw: str) -> str:
    """Undo quoting and ``\\ `` escapes that ``.env`` files leave in paths."""
    value = raw.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
        value = value[1:-1]
    return value.replace("\\ ", " ")


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_optional(name: str) -> str | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return raw.strip()


def _ensure_directories(storage: StorageSettings) -> None:
    storage.output_root.mkdir(parents=True, exist_ok=True)
    storage.scratch_root.mkdir(parents=True, exist_ok=True)


def load_config() -> AppConfig:
    """Load configuration from environment (SQLite queue by default)."""
    queue = QueueSettings(
        dsn=os.getenv("DATABASE_URL", "sqlite:///sceneconv-queue.db"),
        default_attempts=int(os.getenv("SKETCHUP_JOB_ATTEMPTS", 3)),
        backoff_delay_seconds=float(os.getenv("SKETCHUP_JOB_BACKOFF_SECONDS", 2.0)),
        statement_timeout_ms=int(os.getenv("QUEUE_STATEMENT_TIMEOUT_MS", 5_000)),
        retained_finished_jobs=int(os.getenv("SKETCHUP_RETAINED_JOBS", 1000)),
    )

    tools = ToolPaths(
        assimp_path=normalize_env_path(os.getenv("ASSIMP_PATH", "assimp")),
        assimp_format=os.getenv("ASSIMP_EXPORT_FORMAT", "glb2"),
        sketchup_app_path=normalize_env_path(
            os.getenv("SKETCHUP_APP_PATH", DEFAULT_SKETCHUP_APP_PATH)
        ),
        exporter=os.getenv("SKETCHUP_CONVERTER", "ruby").strip().lower(),
        gltf_pipeline_path=normalize_env_path(os.getenv("GLTF_PIPELINE_PATH", "gltf-pipeline")),
        csdk_bin=_env_optional("SKETCHUP_CSDK_BIN"),
        csdk_args_json=_env_optional("SKETCHUP_CSDK_ARGS_JSON"),
        csdk_format=os.getenv("SKETCHUP_CSDK_FORMAT", "dae").strip().lower(),
        csdk_dyld_framework_path=_env_optional("SKETCHUP_CSDK_DYLD_FRAMEWORK_PATH"),
    )

    store_url = _env_optional("SKETCHUP_STORE_URL")
    storage = StorageSettings(
        output_root=Path(os.getenv("SKETCHUP_OUTPUT_DIR", "./uploads/converted")).resolve(),
        scratch_root=Path(os.getenv("SKETCHUP_SCRATCH_DIR", tempfile.gettempdir())).resolve(),
        public_prefix=os.getenv("SKETCHUP_PUBLIC_PREFIX", "/models").rstrip("/"),
        store_url=store_url.rstrip("/") if store_url else None,
        internal_key=_env_optional("SKETCHUP_INTERNAL_KEY"),
        upload_timeout_seconds=float(os.getenv("SKETCHUP_UPLOAD_TIMEOUT_SECONDS", 120.0)),
    )
    _ensure_directories(storage)

    worker = WorkerSettings(
        concurrency=int(os.getenv("SKETCHUP_WORKER_CONCURRENCY", 4)),
        poll_interval_seconds=float(os.getenv("SKETCHUP_WORKER_POLL_SECONDS", 1.0)),
        lease_seconds=float(os.getenv("SKETCHUP_JOB_LEASE_SECONDS", 30 * 60)),
        enable_draco=_env_flag("SKETCHUP_ENABLE_DRACO"),
    )

    return AppConfig(
        queue=queue,
        tools=tools,
        storage=storage,
        worker=worker,
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
