"""FastAPI application entry point for rtsp2hls.

rtsp2hls: supervises ffmpeg processes that turn RTSP camera feeds into HLS
playlists, and serves those playlists to a local UI.

Architecture:
    - FastAPI on a single asyncio event loop (the only place supervisor
      state changes)
    - One ServiceContainer per app, stored on app.state
    - ffmpeg subprocesses via asyncio.create_subprocess_exec
    - Segment files served straight from the output root

Exit paths:
    SIGINT / SIGTERM (SIGBREAK on Windows) are caught by uvicorn, which ends
    the lifespan; POST /api/control/shutdown runs the same cleanup first and
    then asks uvicorn to exit. Both land in LifecycleHooks.shutdown(), which
    runs its cleanup pass only once.

Logging Strategy:
    INFO  - Application lifecycle, configuration summary
    WARN  - Missing ffmpeg, auto-start failures
    ERROR - Startup errors with stack traces
"""
from __future__ import annotations

import asyncio
import logging
import math
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import uvicorn
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .api import configs, control, health, segments, streams
from .api.errors import (
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from .config.settings import RuntimeSettings
from .logging_config import configure_logging
from .middleware.cors import CORSMiddleware
from .middleware.request_id import RequestIDMiddleware
from .services.container import ServiceContainer
from .services.errors import StartError
from .services.lifecycle import clean_output_root
from .services.supervisor import Spawner, ToolChecker

logger = logging.getLogger(__name__)

# ============================================================================
# Application Lifespan Management
# ============================================================================

async def _auto_start(container: ServiceContainer) -> None:
    """Start every saved camera when the autoStart setting is on."""
    app_settings = container.config_store.get_settings()
    if not app_settings.auto_start:
        return

    configs_to_start = container.config_store.list_streams()
    if not configs_to_start:
        return
    logger.info(f"Auto-starting {len(configs_to_start)} stream(s)")

    async def start_one(request) -> None:
        try:
            await container.supervisor.start(request)
        except StartError as e:
            logger.warning(f"[{request.identifier}] Auto-start failed ({e.kind.value}): {e.message}")

    for config in configs_to_start:
        try:
            request = config.to_request(app_settings, container.settings.output_dir)
        except ValueError as e:
            logger.warning(f"[{config.id}] Saved config cannot be started: {e}")
            continue
        task = asyncio.create_task(start_one(request), name=f"rtsp2hls-autostart-{config.id}")
        container.background_tasks.add(task)
        task.add_done_callback(container.background_tasks.discard)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: clear leftovers, probe ffmpeg, auto-start. Shutdown: cleanup pass."""
    container: ServiceContainer = app.state.services
    settings = container.settings

    logger.info("=" * 80)
    logger.info("rtsp2hls starting...")
    logger.info("=" * 80)

    try:
        settings.output_dir.mkdir(parents=True, exist_ok=True)
        clean_output_root(settings.output_dir)

        tool = await container.tool_checker()
        if tool.available:
            logger.info(f"ffmpeg: {tool.path} ({'bundled' if tool.using_local else 'system'})")
        else:
            logger.warning(f"ffmpeg unavailable: {tool.error}")
            logger.warning("Streams will fail to start until ffmpeg is installed")

        await _auto_start(container)
    except Exception as e:
        logger.error(f"Startup error: {e}", exc_info=True)

    logger.info(f"Serving {settings.output_dir.resolve()} at {settings.hls_url}")
    logger.info("=" * 80)

    yield

    await container.lifecycle.shutdown("server-exit")
    logger.info("rtsp2hls shutdown complete")


# ============================================================================
# Application Factory
# ============================================================================

def create_app(
    settings: RuntimeSettings | None = None,
    spawn: Spawner | None = None,
    tool_checker: ToolChecker | None = None,
) -> FastAPI:
    """Build the app. spawn and tool_checker replace process creation in tests."""
    settings = settings or RuntimeSettings.from_env()

    app = FastAPI(
        title="rtsp2hls",
        description="RTSP to HLS stream supervisor with a segment-serving HTTP API.",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.services = ServiceContainer(settings, spawn=spawn, tool_checker=tool_checker)

    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore
    app.add_exception_handler(Exception, general_exception_handler)

    # Reverse order: CORS runs first and answers OPTIONS before anything else
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(CORSMiddleware)

    app.include_router(health.router)
    app.include_router(streams.router)
    app.include_router(control.router)
    app.include_router(configs.router)
    # Catch-all file routes last
    app.include_router(segments.router)

    logger.debug(
        f"Config: port={settings.port}, output={settings.output_dir}, "
        f"tools={settings.tools_dir}, ready_timeout={settings.ready_timeout}s"
    )
    return app


def run() -> None:
    """Console entry point: configure logging and serve until told to exit."""
    settings = RuntimeSettings.from_env()
    configure_logging(settings.log_level, settings.log_format)
    application = create_app(settings)

    server = uvicorn.Server(uvicorn.Config(
        application,
        host=settings.host,
        port=settings.port,
        log_config=None,
        timeout_graceful_shutdown=math.ceil(settings.shutdown_timeout),
    ))

    def release_listener() -> None:
        server.should_exit = True

    application.state.services.lifecycle.add_exit_callback(release_listener)
    logger.info(f"Listening on http://{settings.host}:{settings.port}")
    server.run()
