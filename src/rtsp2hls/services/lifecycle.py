"""Shutdown coordination.

Every exit path (window close via POST /api/control/shutdown, SIGINT/SIGTERM
delivered through uvicorn, ASGI lifespan exit) funnels into
LifecycleHooks.shutdown(). The first call starts one cleanup pass; every later
or concurrent call awaits that same pass.

Cleanup sequence:
    1. Set the supervisor's shutting-down flag (refuse starts, abort readiness)
    2. stop_all() and its grace window
    3. terminate_all(): wait for exits, force-kill survivors
    4. Delete .m3u8 / .m3u8.tmp / .ts files from the output root
    5. Run exit callbacks (uvicorn should_exit)

Steps 2-3 are bounded by shutdown_timeout; on expiry every remaining process
is killed outright. Cleanup errors are logged and never raised.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Callable, Final

from .. import metrics
from ..config import ffmpeg_defaults
from .supervisor import StreamSupervisor

logger = logging.getLogger(__name__)

CLEANUP_SUFFIXES: Final[frozenset[str]] = frozenset({
    ffmpeg_defaults.MANIFEST_SUFFIX,
    ffmpeg_defaults.SEGMENT_SUFFIX,
})


def _is_stream_file(path: Path) -> bool:
    return path.suffix in CLEANUP_SUFFIXES or path.name.endswith(ffmpeg_defaults.PARTIAL_MANIFEST_SUFFIX)


def clean_output_root(output_root: Path) -> int:
    """Delete manifest and segment files under output_root.

    Returns:
        Number of files removed. Per-file failures are logged and skipped.
    """
    if not output_root.is_dir():
        return 0
    removed = 0
    for path in output_root.rglob("*"):
        if not _is_stream_file(path) or not path.is_file():
            continue
        try:
            path.unlink()
            removed += 1
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning(f"Could not remove {path}: {e}")
    logger.info(f"Removed {removed} stream file(s) from {output_root}")
    return removed


class LifecycleHooks:
    """Runs the shutdown sequence at most once per process."""

    def __init__(
        self,
        supervisor: StreamSupervisor,
        output_root: Path,
        shutdown_timeout: float = 10.0,
    ) -> None:
        self.supervisor = supervisor
        self.output_root = output_root
        self.shutdown_timeout = shutdown_timeout
        self.cleanup_passes = 0
        self._shutdown_task: asyncio.Task | None = None
        self._exit_callbacks: list[Callable[[], None]] = []

    @property
    def is_shutting_down(self) -> bool:
        return self._shutdown_task is not None

    @property
    def is_complete(self) -> bool:
        return self._shutdown_task is not None and self._shutdown_task.done()

    def add_exit_callback(self, callback: Callable[[], None]) -> None:
        """Called once cleanup is done, e.g. to release the HTTP listener."""
        self._exit_callbacks.append(callback)

    async def shutdown(self, reason: str = "unknown") -> None:
        """Run (or join) the single cleanup pass. Never raises."""
        if self._shutdown_task is None:
            logger.info(f"Shutdown requested ({reason})")
            metrics.shutdowns_total.labels(trigger=reason).inc()
            self._shutdown_task = asyncio.ensure_future(self._run_cleanup())
        else:
            logger.debug(f"Shutdown already in progress, joining ({reason})")
        await asyncio.shield(self._shutdown_task)

    async def stop_all_streams(self) -> int:
        """Stop every stream and clear output without exiting the server."""
        stopped = await self.supervisor.stop_all()
        await self.supervisor.terminate_all()
        try:
            clean_output_root(self.output_root)
        except OSError:
            logger.error("Output cleanup failed", exc_info=True)
        return stopped

    async def _run_cleanup(self) -> None:
        self.cleanup_passes += 1
        self.supervisor.begin_shutdown()

        try:
            await asyncio.wait_for(self._stop_processes(), timeout=self.shutdown_timeout)
        except asyncio.TimeoutError:
            logger.error(f"Shutdown exceeded {self.shutdown_timeout:g}s, killing remaining processes")
            self.supervisor.kill_all()
        except Exception:
            logger.error("Stopping streams failed during shutdown", exc_info=True)
            self.supervisor.kill_all()

        try:
            clean_output_root(self.output_root)
        except Exception:
            logger.error("Output cleanup failed during shutdown", exc_info=True)

        for callback in self._exit_callbacks:
            try:
                callback()
            except Exception:
                logger.error("Exit callback failed", exc_info=True)
        logger.info("Shutdown cleanup complete")

    async def _stop_processes(self) -> None:
        await self.supervisor.stop_all()
        forced = await self.supervisor.terminate_all()
        if forced:
            logger.warning(f"Force-killed {forced} process(es) during shutdown")
