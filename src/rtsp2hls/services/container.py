"""Service container shared by every request.

All requests must reach the SAME supervisor: its identifier map is the only
record of which transcoders are alive. The container is built once by
main.create_app(), stored on app.state, and handed to route handlers through
the Depends() getters below.

Logging Strategy:
    DEBUG - Container construction
    ERROR - Service requested before initialization
"""
from __future__ import annotations

import asyncio
import logging

from fastapi import Request

from ..config.settings import RuntimeSettings
from ..config_io import ConfigStore
from .control import ControlInterface
from .lifecycle import LifecycleHooks
from .segments import SegmentStore
from .supervisor import Spawner, StreamSupervisor, ToolChecker
from .tool_locator import ToolLocator

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Everything the HTTP layer needs, wired together."""

    def __init__(
        self,
        settings: RuntimeSettings,
        spawn: Spawner | None = None,
        tool_checker: ToolChecker | None = None,
    ) -> None:
        self.settings = settings
        self.tool_checker = tool_checker or ToolLocator(settings.tools_dir).check
        self.supervisor = StreamSupervisor(settings, spawn=spawn, tool_checker=self.tool_checker)
        self.lifecycle = LifecycleHooks(
            self.supervisor,
            settings.output_dir,
            shutdown_timeout=settings.shutdown_timeout,
        )
        self.config_store = ConfigStore(settings.config_dir, dry_run=settings.dry_run)
        self.control = ControlInterface(
            self.supervisor,
            self.tool_checker,
            stream_limit=lambda: self.config_store.get_settings().max_concurrent_streams,
        )
        self.segments = SegmentStore(settings.output_dir)
        # Keeps fire-and-forget tasks (auto-start) referenced until done
        self.background_tasks: set[asyncio.Task] = set()
        logger.debug(f"Service container ready (output={settings.output_dir})")


def get_container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "services", None)
    if container is None:
        logger.error("Service requested before initialization")
        raise RuntimeError("Services not initialized. Application startup may have failed.")
    return container


def get_settings(request: Request) -> RuntimeSettings:
    return get_container(request).settings


def get_supervisor(request: Request) -> StreamSupervisor:
    return get_container(request).supervisor


def get_control(request: Request) -> ControlInterface:
    return get_container(request).control


def get_lifecycle(request: Request) -> LifecycleHooks:
    return get_container(request).lifecycle


def get_config_store(request: Request) -> ConfigStore:
    return get_container(request).config_store


def get_segments(request: Request) -> SegmentStore:
    return get_container(request).segments
