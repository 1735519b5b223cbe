"""
main.py — Upload Gateway Service Entrypoint
=============================================
Runs the FastAPI gateway that receives chunked uploads, rebuilds the
files and hands each one to a completion hook.

Run with:
    uvicorn upload_gateway.main:app --host 0.0.0.0 --port 8000
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from upload_gateway.api.routes import router
from upload_gateway.config import Settings, settings
from upload_gateway.services.cleanup import FileConsumer
from upload_gateway.services.registry import TransmissionRegistry

# ── Logging Configuration ─────────────────────────────────
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("upload-gateway")


async def reaper_loop(registry: TransmissionRegistry, interval: int, idle_timeout: int):
    """Periodically release transmissions that stopped receiving chunks."""
    while True:
        try:
            await asyncio.sleep(interval)
            await registry.sweep_idle(idle_timeout)
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.warning("Idle sweep failed: %s", e)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: start the idle reaper, release uploads on exit."""
    config: Settings = app.state.settings
    registry: TransmissionRegistry = app.state.registry
    logger.info("Upload Gateway starting on %s:%d", config.HOST, config.PORT)
    logger.info("Work dir:  %s", config.WORK_DIR)
    logger.info("Max size:  %d bytes", config.MAX_TRANSMISSION_SIZE)

    reaper_task = None
    if config.TRANSMISSION_IDLE_TIMEOUT > 0:
        reaper_task = asyncio.create_task(
            reaper_loop(registry, config.SWEEP_INTERVAL, config.TRANSMISSION_IDLE_TIMEOUT)
        )
        logger.info(
            "Idle reaper: timeout=%ds, interval=%ds",
            config.TRANSMISSION_IDLE_TIMEOUT,
            config.SWEEP_INTERVAL,
        )

    yield

    # Cleanup
    if reaper_task is not None:
        reaper_task.cancel()
        try:
            await reaper_task
        except asyncio.CancelledError:
            pass
    await registry.close()
    logger.info("Upload Gateway shutting down")


def create_app(
    config: Optional[Settings] = None,
    file_consumer: Optional[FileConsumer] = None,
    max_size: Optional[int] = None,
) -> FastAPI:
    """
    Build the gateway application.

    Args:
        config: Settings to use; defaults to the environment settings.
        file_consumer: Completion hook called as
                       ``consumer(path, original_filename, metadata)``
                       for every rebuilt file. It may be async and may
                       return a dict merged into the final response.
                       The file is deleted once it returns.
        max_size: Size ceiling for transmissions received through
                  ``/upload``, overriding ``MAX_TRANSMISSION_SIZE``.

    Returns:
        The FastAPI application, with its registry on ``app.state``.
    """
    config = config or settings
    app = FastAPI(
        title="Chunked Upload Gateway",
        description=(
            "Receives files uploaded as independently sent, numbered "
            "chunks and rebuilds them once every chunk has arrived.\n\n"
            "**Upload:** client id → chunks (any order) → terminal chunk "
            "with filename → reassemble → completion hook → cleanup"
        ),
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = config
    app.state.registry = TransmissionRegistry(
        work_dir=config.WORK_DIR,
        max_size=config.MAX_TRANSMISSION_SIZE,
        duplicate_policy=config.DUPLICATE_CHUNK_POLICY,
    )
    app.state.file_consumer = file_consumer
    app.state.upload_max_size = max_size
    app.include_router(router)
    return app


app = create_app()
