"""FastAPI application entry point."""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from .api import router
from .config import AppConfig, load_config
from .infrastructure.queue import PostgresJobQueue, PostgresQueueConfig, init_queue
from .logging import configure_logging
from .media.storage import ArtifactStore


def queue_config_from(config: AppConfig) -> PostgresQueueConfig:
    return PostgresQueueConfig(
        dsn=config.queue.dsn,
        default_attempts=config.queue.default_attempts,
        backoff_delay_seconds=config.queue.backoff_delay_seconds,
        statement_timeout_ms=config.queue.statement_timeout_ms,
        lease_seconds=config.worker.lease_seconds,
    )


def create_app(config: AppConfig | None = None, *, queue: PostgresJobQueue | None = None) -> FastAPI:
    """Build FastAPI instance with configured dependencies."""
    cfg = config or load_config()
    configure_logging(cfg.log_level)
    app = FastAPI(title="sceneconv")
    app.state.config = cfg
    app.state.queue = queue or init_queue(queue_config_from(cfg))
    app.state.artifacts = ArtifactStore(cfg.storage.output_root, cfg.storage.public_prefix)
    app.include_router(router)
    cfg.storage.output_root.mkdir(parents=True, exist_ok=True)
    app.mount(
        cfg.storage.public_prefix or "/models",
        StaticFiles(directory=cfg.storage.output_root),
        name="models",
    )
    return app
