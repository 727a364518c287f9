"""Standalone conversion worker process."""

from __future__ import annotations

import asyncio
import logging
import signal

from dotenv import load_dotenv

from .config import AppConfig, load_config
from .converters import AssimpConverter, DracoCompressor, create_exporter
from .infrastructure.queue import PostgresJobQueue, init_queue
from .logging import configure_logging
from .main import queue_config_from
from .media.scratch import ScratchStore
from .media.storage import ArtifactStore, StorageResolver
from .workers import ConversionWorker

logger = logging.getLogger(__name__)


def build_worker(config: AppConfig, *, queue: PostgresJobQueue | None = None) -> ConversionWorker:
    tools = config.tools
    artifacts = ArtifactStore(config.storage.output_root, config.storage.public_prefix)
    compressor = (
        DracoCompressor(binary=tools.gltf_pipeline_path, timeout_seconds=tools.compress_timeout_seconds)
        if config.worker.enable_draco
        else None
    )
    return ConversionWorker(
        queue=queue or init_queue(queue_config_from(config)),
        exporter=create_exporter(tools),
        converter=AssimpConverter(
            binary=tools.assimp_path,
            output_format=tools.assimp_format,
            timeout_seconds=tools.convert_timeout_seconds,
        ),
        artifacts=artifacts,
        storage=StorageResolver(
            artifacts=artifacts,
            store_url=config.storage.store_url,
            internal_key=config.storage.internal_key,
            timeout_seconds=config.storage.upload_timeout_seconds,
        ),
        scratch=ScratchStore(config.storage.scratch_root),
        compressor=compressor,
        poll_interval=config.worker.poll_interval_seconds,
        concurrency=config.worker.concurrency,
    )


async def run_worker(config: AppConfig) -> None:
    worker = build_worker(config)
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown_event.set)
        except NotImplementedError:
            logger.debug("signal handlers unavailable for %s", sig)

    logger.info(
        "worker.starting",
        extra={
            "exporter": config.tools.exporter,
            "remote_store": config.storage.remote_enabled,
            "draco": config.worker.enable_draco,
        },
    )
    try:
        await worker.run_pool(shutdown_event)
    finally:
        worker.queue.close()


def main() -> None:
    load_dotenv(".env.local")
    load_dotenv(".env", override=False)
    config = load_config()
    configure_logging(config.log_level)
    asyncio.run(run_worker(config))


if __name__ == "__main__":
    main()
