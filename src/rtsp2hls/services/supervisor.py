"""Stream process supervisor.

Owns the identifier → ProcessHandle map and every transcoder process:
- start: tool check, output preparation, spawn, readiness wait
- stop / stop_all: immediate map removal, terminate, scheduled force kill
- status / status_all: derived snapshots, never persisted
- terminate_all: bounded wait for signalled processes, used by shutdown
- subscribe: status-changed notifications (post-readiness crashes surface here)

Concurrency:
    Everything runs on one asyncio event loop, which is the only place the
    map is mutated, so no locks are needed. A handle is registered before the
    first await of start(); a second start for the same identifier therefore
    sees it and fails with ALREADY_RUNNING instead of spawning twice.

Process lifecycle:
    STARTING ──manifest──> RUNNING ──exit──> STOPPED / ERROR
        │                     │
        └──stop / exit───────>└──stop──> STOPPING ──reap──> STOPPED
                                         (kill after kill_timeout)

    STOPPING is only ever an event: the handle has already left the map.

Logging Strategy:
    DEBUG - Transcoder output lines, command lines, timers
    INFO  - Starts, readiness, stops, clean exits
    WARN  - Classified errors, forced kills
    ERROR - Unexpected exits, listener failures
"""
from __future__ import annotations

import asyncio
import codecs
import logging
import subprocess
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Final

from .. import metrics
from ..config.settings import RuntimeSettings
from ..models.control import ToolCheckResult
from ..models.stream import (
    StreamErrorRecord,
    StreamEvent,
    StreamPhase,
    StreamReadyInfo,
    StreamRequest,
    StreamStatusRecord,
)
from ..utils.ffmpeg import build_hls_command, remove_stale_output
from ..utils.strings import mask_rtsp_credentials
from .diagnostics import classify, classify_exit, describe, is_startup_marker
from .errors import ErrorClass, FailureKind, StartError
from .process_handle import ProcessHandle
from .readiness import ReadinessPoller
from .tool_locator import ToolLocator

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

STDERR_CHUNK_SIZE: Final[int] = 4096
READER_DRAIN_TIMEOUT: Final[float] = 1.0
"""How long to wait for pipe readers after the process has exited."""
CLEAN_EARLY_EXIT_MESSAGE: Final[str] = (
    "ffmpeg finished without producing a playlist. The source may have ended "
    "or sent no video; check the RTSP URL."
)

Spawner = Callable[..., Awaitable[Any]]
ToolChecker = Callable[[], Awaitable[ToolCheckResult]]
StreamListener = Callable[[StreamEvent], None]


class StreamSupervisor:
    """Supervises one transcoder process per stream identifier.

    Attributes:
        settings: Runtime settings (timeouts, output root, port)
        shutting_down: Set once shutdown begins; new starts are refused
    """

    def __init__(
        self,
        settings: RuntimeSettings,
        spawn: Spawner | None = None,
        tool_checker: ToolChecker | None = None,
    ) -> None:
        self.settings = settings
        self.shutting_down = False
        self._spawn = spawn or asyncio.create_subprocess_exec
        self._tool_checker = tool_checker or ToolLocator(settings.tools_dir).check

        self._handles: dict[str, ProcessHandle] = {}
        self._pollers: dict[str, ReadinessPoller] = {}
        self._errors: dict[str, StreamErrorRecord] = {}
        self._terminating: set[ProcessHandle] = set()
        self._listeners: list[StreamListener] = []

    # ========================================================================
    # Start
    # ========================================================================

    async def start(self, request: StreamRequest) -> StreamReadyInfo:
        """Spawn a transcoder and wait until its manifest exists.

        Raises:
            StartError: ALREADY_RUNNING, STOPPED_DURING_STARTUP,
                EXTERNAL_TOOL_UNAVAILABLE, SPAWN_FAILURE, READINESS_TIMEOUT,
                FILE_ACCESS, or the class recorded when the process exited
                before readiness
        """
        stream_id = request.identifier
        if self.shutting_down:
            metrics.streams_start_total.labels(outcome=FailureKind.STOPPED_DURING_STARTUP.value).inc()
            raise StartError(FailureKind.STOPPED_DURING_STARTUP, "Server is shutting down", stream_id)
        if stream_id in self._handles:
            logger.warning(f"[{stream_id}] Start refused: already running")
            metrics.streams_start_total.labels(outcome=FailureKind.ALREADY_RUNNING.value).inc()
            raise StartError(FailureKind.ALREADY_RUNNING, f"Stream {stream_id} is already running", stream_id)

        try:
            output_dir = self._output_dir_for(request)
        except StartError as e:
            logger.warning(f"[{stream_id}] Start refused: {e.message}")
            metrics.streams_start_total.labels(outcome=e.kind.value).inc()
            raise
        manifest_path = output_dir / request.manifest_name
        handle = ProcessHandle(stream_id, manifest_path, self._playback_url(manifest_path))
        poller = ReadinessPoller(
            manifest_path,
            interval=self.settings.poll_interval,
            timeout=self.settings.ready_timeout,
            identifier=stream_id,
        )
        self._handles[stream_id] = handle
        self._pollers[stream_id] = poller
        self._errors.pop(stream_id, None)
        self._update_gauge()
        self._emit(StreamEvent(identifier=stream_id, phase=StreamPhase.STARTING))

        logger.info(f"[{stream_id}] Starting stream from {mask_rtsp_credentials(request.source_url)}")
        started = time.monotonic()
        try:
            await self._launch(request, handle, poller)
            await poller.wait()
            if handle.last_exit_code is not None and not handle.stop_requested:
                error_class = handle.current_error_class or ErrorClass.UNKNOWN
                raise StartError(FailureKind.from_error_class(error_class), describe(error_class), stream_id, error_class)
        except StartError as e:
            self._fail_start(handle, poller, e)
            raise
        except asyncio.CancelledError:
            logger.info(f"[{stream_id}] Start cancelled")
            self._fail_start(handle, poller, StartError(
                FailureKind.STOPPED_DURING_STARTUP, "Start was cancelled", stream_id,
            ))
            raise
        except Exception as e:
            logger.error(f"[{stream_id}] Unexpected error while starting: {e}", exc_info=True)
            error = StartError(FailureKind.SPAWN_FAILURE, f"Failed to launch ffmpeg: {e}", stream_id)
            self._fail_start(handle, poller, error)
            raise error from e

        handle.ready = True
        if self._pollers.get(stream_id) is poller:
            del self._pollers[stream_id]
        metrics.readiness_wait_seconds.observe(time.monotonic() - started)
        metrics.streams_start_total.labels(outcome="ready").inc()
        logger.info(f"[{stream_id}] Stream ready: {handle.playback_url} (PID={handle.pid})")
        self._emit(StreamEvent(identifier=stream_id, phase=StreamPhase.RUNNING))
        return StreamReadyInfo(
            identifier=stream_id,
            playback_url=handle.playback_url,
            manifest_path=str(manifest_path),
        )

    async def _launch(self, request: StreamRequest, handle: ProcessHandle, poller: ReadinessPoller) -> None:
        stream_id = request.identifier
        tool = await self._tool_checker()
        if not tool.available or not tool.path:
            raise StartError(
                FailureKind.EXTERNAL_TOOL_UNAVAILABLE,
                tool.error or "ffmpeg is not available",
                stream_id,
            )
        self._ensure_still_wanted(handle)

        output_dir = handle.manifest_path.parent
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
            remove_stale_output(output_dir, stream_id)
        except OSError as e:
            raise StartError(
                FailureKind.FILE_ACCESS,
                f"{describe(ErrorClass.FILE_ACCESS)} ({e})",
                stream_id,
                ErrorClass.FILE_ACCESS,
            ) from e

        command = build_hls_command(tool.path, request, handle.manifest_path)
        try:
            process = await self._spawn(
                *command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise StartError(FailureKind.SPAWN_FAILURE, f"Failed to launch ffmpeg: {e}", stream_id) from e

        handle.attach(process, command)
        handle.exit_task = asyncio.create_task(
            self._watch_process(handle, poller), name=f"rtsp2hls-exit-{stream_id}"
        )
        logger.debug(f"[{stream_id}] ffmpeg spawned: PID={handle.pid}")
        self._ensure_still_wanted(handle)

    def _ensure_still_wanted(self, handle: ProcessHandle) -> None:
        if handle.stop_requested or self.shutting_down:
            raise StartError(
                FailureKind.STOPPED_DURING_STARTUP,
                "Stream was stopped before it became ready",
                handle.identifier,
            )

    def _fail_start(self, handle: ProcessHandle, poller: ReadinessPoller, error: StartError) -> None:
        stream_id = handle.identifier
        handle.stop_requested = True
        poller.abort(error)
        if self._pollers.get(stream_id) is poller:
            del self._pollers[stream_id]
        owned = self._handles.get(stream_id) is handle
        if owned:
            del self._handles[stream_id]
            self._update_gauge()
        self._signal_termination(handle)

        metrics.streams_start_total.labels(outcome=error.kind.value).inc()
        if error.kind is FailureKind.STOPPED_DURING_STARTUP:
            logger.info(f"[{stream_id}] Start aborted: {error.message}")
            if owned:
                self._emit(StreamEvent(identifier=stream_id, phase=StreamPhase.STOPPED))
            return

        logger.warning(f"[{stream_id}] Start failed ({error.kind.value}): {error.message}")
        if owned:
            error_class = error.error_class or handle.current_error_class or ErrorClass.UNKNOWN
            self._record_error(handle, error_class, error.message)
            self._emit(StreamEvent(
                identifier=stream_id,
                phase=StreamPhase.ERROR,
                error_class=error_class,
                error_message=error.message,
            ))

    # ========================================================================
    # Process Monitoring
    # ========================================================================

    async def _watch_process(self, handle: ProcessHandle, poller: ReadinessPoller) -> None:
        """Reap the process and react to its exit."""
        process = handle.process
        stream_id = handle.identifier
        readers = [
            asyncio.create_task(self._read_diagnostics(handle, process.stderr)),
            asyncio.create_task(self._drain_stdout(stream_id, process.stdout)),
        ]
        exit_code = await process.wait()
        _, pending = await asyncio.wait(readers, timeout=READER_DRAIN_TIMEOUT)
        for reader in pending:
            reader.cancel()

        handle.last_exit_code = exit_code
        if handle.kill_timer is not None:
            handle.kill_timer.cancel()
            handle.kill_timer = None
        self._terminating.discard(handle)

        if handle.stop_requested:
            logger.info(f"[{stream_id}] ffmpeg exited after stop (code {exit_code})")
            if handle.awaiting_reap and stream_id not in self._handles:
                self._emit(StreamEvent(identifier=stream_id, phase=StreamPhase.STOPPED))
            return

        if not handle.ready:
            error_class = handle.current_error_class or classify_exit(exit_code, False)
            if error_class is None:
                # Exit code 0 with no playlist: not a classified failure, still not a stream
                error_class = ErrorClass.UNKNOWN
                message = CLEAN_EARLY_EXIT_MESSAGE
            else:
                message = describe(error_class)
            logger.warning(f"[{stream_id}] ffmpeg exited before readiness (code {exit_code})")
            poller.abort(StartError(
                FailureKind.from_error_class(error_class),
                message,
                stream_id,
                error_class,
            ))
            return

        owned = self._handles.get(stream_id) is handle
        if owned:
            del self._handles[stream_id]
            self._update_gauge()

        error_class = classify_exit(exit_code, True)
        if error_class is None:
            logger.info(f"[{stream_id}] ffmpeg exited normally")
            if owned:
                self._emit(StreamEvent(identifier=stream_id, phase=StreamPhase.STOPPED))
            return

        handle.current_error_class = error_class
        logger.error(f"[{stream_id}] ffmpeg exited unexpectedly (code {exit_code})")
        if owned:
            self._record_error(handle, error_class)
            self._emit(StreamEvent(
                identifier=stream_id,
                phase=StreamPhase.ERROR,
                error_class=error_class,
                error_message=describe(error_class),
            ))

    async def _read_diagnostics(self, handle: ProcessHandle, stream: asyncio.StreamReader | None) -> None:
        if stream is None:
            logger.warning(f"[{handle.identifier}] ffmpeg stderr unavailable")
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(STDERR_CHUNK_SIZE)
            if not chunk:
                break
            for line in handle.feed(decoder.decode(chunk)):
                self._inspect_line(handle, line)
        for line in handle.feed(decoder.decode(b"", final=True)) + handle.flush():
            self._inspect_line(handle, line)

    def _inspect_line(self, handle: ProcessHandle, line: str) -> None:
        stream_id = handle.identifier
        if is_startup_marker(line):
            if handle.mark_started():
                logger.info(f"[{stream_id}] ffmpeg pipeline started")
                self._errors.pop(stream_id, None)
            logger.debug(f"FFmpeg [{stream_id}]: {line}")
            return

        matched = classify(line)
        if matched is None:
            lowered = line.lower()
            if "error" in lowered or "fatal" in lowered:
                logger.warning(f"FFmpeg [{stream_id}]: {line}")
            else:
                logger.debug(f"FFmpeg [{stream_id}]: {line}")
            return

        error_class = handle.record_error(matched)
        logger.warning(f"[{stream_id}] Diagnostic classified as {error_class.value}: {line}")
        if self._handles.get(stream_id) is handle:
            self._record_error(handle, error_class)

    async def _drain_stdout(self, stream_id: str, stream: asyncio.StreamReader | None) -> None:
        if stream is None:
            return
        while True:
            line = await stream.readline()
            if not line:
                break
            logger.debug(f"FFmpeg [{stream_id}] stdout: {line.decode('utf-8', errors='replace').rstrip()}")

    # ========================================================================
    # Stop
    # ========================================================================

    def stop(self, stream_id: str) -> bool:
        """Stop a stream. Returns False if nothing is tracked for stream_id.

        The handle leaves the map immediately, so a new start for the same
        identifier is accepted while the old process is still terminating.
        """
        handle = self._handles.pop(stream_id, None)
        if handle is None:
            logger.debug(f"[{stream_id}] Stop ignored: not running")
            return False

        handle.stop_requested = True
        handle.awaiting_reap = handle.exit_task is not None and not handle.exit_task.done()
        self._errors.pop(stream_id, None)
        self._update_gauge()

        poller = self._pollers.pop(stream_id, None)
        if poller is not None:
            poller.abort()
        self._signal_termination(handle)

        metrics.streams_stop_total.inc()
        logger.info(f"[{stream_id}] Stream stopped")
        if handle.awaiting_reap:
            # STOPPED follows once the exit watcher reaps the process
            self._emit(StreamEvent(identifier=stream_id, phase=StreamPhase.STOPPING))
        else:
            self._emit(StreamEvent(identifier=stream_id, phase=StreamPhase.STOPPED))
        return True

    async def stop_all(self) -> int:
        """Stop every tracked stream, then wait out the grace window."""
        identifiers = list(self._handles)
        for stream_id in identifiers:
            self.stop(stream_id)
        if identifiers:
            logger.info(f"Stopped {len(identifiers)} stream(s)")
        await asyncio.sleep(self.settings.stop_grace)
        return len(identifiers)

    def begin_shutdown(self) -> None:
        """Refuse new starts and abort every pending readiness wait."""
        self.shutting_down = True
        for poller in list(self._pollers.values()):
            poller.abort(StartError(
                FailureKind.STOPPED_DURING_STARTUP,
                "Server is shutting down",
                poller.identifier,
            ))

    async def terminate_all(self, timeout: float | None = None) -> int:
        """Wait for signalled processes to exit, killing survivors after timeout.

        Returns:
            Number of processes that had to be force-killed
        """
        timeout = self.settings.kill_timeout if timeout is None else timeout
        tasks = [h.exit_task for h in self._terminating if h.exit_task is not None]
        if not tasks:
            return 0

        _, pending = await asyncio.wait(tasks, timeout=timeout)
        if not pending:
            return 0

        survivors = list(self._terminating)
        logger.warning(f"{len(survivors)} process(es) ignored termination, killing")
        for handle in survivors:
            self._force_kill(handle)
        await asyncio.wait(pending, timeout=READER_DRAIN_TIMEOUT)
        return len(survivors)

    def kill_all(self) -> None:
        """Force-kill every process still known to the supervisor."""
        for handle in list(self._handles.values()) + list(self._terminating):
            handle.stop_requested = True
            self._force_kill(handle)
        self._handles.clear()
        self._pollers.clear()
        self._update_gauge()

    def _signal_termination(self, handle: ProcessHandle) -> None:
        """Send SIGTERM once and schedule the force kill."""
        if not handle.is_alive or handle.termination_sent:
            return
        handle.termination_sent = True
        self._terminating.add(handle)
        try:
            handle.process.terminate()
        except ProcessLookupError:
            return
        handle.kill_timer = asyncio.get_running_loop().call_later(
            self.settings.kill_timeout, self._force_kill, handle
        )
        logger.debug(f"[{handle.identifier}] SIGTERM sent, kill in {self.settings.kill_timeout:g}s")

    def _force_kill(self, handle: ProcessHandle) -> None:
        handle.kill_timer = None
        if not handle.is_alive:
            return
        logger.warning(f"[{handle.identifier}] ffmpeg did not exit, killing PID={handle.pid}")
        try:
            handle.process.kill()
        except ProcessLookupError:
            return
        metrics.transcoder_forced_kills_total.inc()

    # ========================================================================
    # Status & Errors
    # ========================================================================

    def status(self, stream_id: str) -> StreamStatusRecord:
        handle = self._handles.get(stream_id)
        if handle is None:
            error = self._errors.get(stream_id)
            if error is None:
                return StreamStatusRecord(identifier=stream_id, phase=StreamPhase.STOPPED)
            return StreamStatusRecord(
                identifier=stream_id,
                phase=StreamPhase.ERROR,
                error_class=error.type,
                error_message=error.message,
            )

        error_class = handle.current_error_class
        return StreamStatusRecord(
            identifier=stream_id,
            phase=StreamPhase.RUNNING if handle.ready else StreamPhase.STARTING,
            output_manifest_path=str(handle.manifest_path),
            playback_url=handle.playback_url,
            error_class=error_class,
            error_message=describe(error_class) if error_class else None,
            started_at=handle.spawned_at,
            pid=handle.pid,
        )

    def status_all(self) -> list[StreamStatusRecord]:
        """Tracked streams in start order, then identifiers with only an error."""
        identifiers = list(self._handles)
        identifiers += [i for i in self._errors if i not in self._handles]
        return [self.status(i) for i in identifiers]

    def is_running(self, stream_id: str) -> bool:
        return stream_id in self._handles

    def pid(self, stream_id: str) -> int | None:
        handle = self._handles.get(stream_id)
        return handle.pid if handle else None

    @property
    def running_identifiers(self) -> list[str]:
        return list(self._handles)

    def get_error(self, stream_id: str) -> StreamErrorRecord | None:
        return self._errors.get(stream_id)

    def clear_error(self, stream_id: str) -> None:
        self._errors.pop(stream_id, None)

    def _record_error(self, handle: ProcessHandle, error_class: ErrorClass, message: str | None = None) -> None:
        self._errors[handle.identifier] = StreamErrorRecord(
            type=error_class,
            message=message or describe(error_class),
            full_output=handle.diagnostic_text,
        )
        metrics.stream_errors_total.labels(error_class=error_class.value).inc()

    # ========================================================================
    # Notifications
    # ========================================================================

    def subscribe(self, listener: StreamListener) -> Callable[[], None]:
        """Register a status-changed listener; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: StreamEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.error(f"[{event.identifier}] Status listener failed", exc_info=True)

    # ========================================================================
    # Helpers
    # ========================================================================

    def _output_dir_for(self, request: StreamRequest) -> Path:
        """Resolved output directory; must be the served root or below it.

        Raises:
            StartError: FILE_ACCESS when the directory lies outside the root
        """
        root = self.settings.output_dir.resolve()
        output_dir = Path(request.output_directory or root).resolve()
        try:
            output_dir.relative_to(root)
        except ValueError:
            raise StartError(
                FailureKind.FILE_ACCESS,
                f"Output directory {output_dir} is outside the served directory {root}",
                request.identifier,
                ErrorClass.FILE_ACCESS,
            ) from None
        return output_dir

    def _playback_url(self, manifest_path: Path) -> str:
        """HLS base URL plus the manifest's path relative to the served root."""
        relative = manifest_path.relative_to(self.settings.output_dir.resolve()).as_posix()
        return f"{self.settings.hls_url}/{relative}"

    def _update_gauge(self) -> None:
        metrics.transcoder_processes_active.set(len(self._handles))
