"""Readiness polling for a freshly spawned stream.

State machine:
    POLLING ─┬─> READY      manifest exists as a regular file
             ├─> TIMED_OUT  elapsed >= timeout (READINESS_TIMEOUT)
             └─> ABORTED    abort(reason) from stop, shutdown or process exit

Exactly one terminal transition happens; later aborts are ignored. Any
filesystem error other than "not found" ends polling at once with FILE_ACCESS
and is never retried.
"""
from __future__ import annotations

import asyncio
import logging
import stat
import time
from enum import Enum
from pathlib import Path

from .errors import ErrorClass, FailureKind, StartError

logger = logging.getLogger(__name__)


class PollerState(str, Enum):
    POLLING = "polling"
    READY = "ready"
    TIMED_OUT = "timed_out"
    ABORTED = "aborted"


class ReadinessPoller:
    """Waits for one manifest file to appear."""

    def __init__(
        self,
        manifest_path: Path,
        interval: float = 1.0,
        timeout: float = 30.0,
        identifier: str | None = None,
    ) -> None:
        self.manifest_path = manifest_path
        self.interval = interval
        self.timeout = timeout
        self.identifier = identifier
        self.state = PollerState.POLLING
        self.attempts = 0
        self._abort_event = asyncio.Event()
        self._abort_reason: StartError | None = None

    def abort(self, reason: StartError | None = None) -> bool:
        """Reject a pending wait. Returns False if already terminal."""
        if self.state is not PollerState.POLLING:
            return False
        self.state = PollerState.ABORTED
        self._abort_reason = reason or StartError(
            FailureKind.STOPPED_DURING_STARTUP,
            "Stream was stopped before it became ready",
            self.identifier,
        )
        self._abort_event.set()
        return True

    def _manifest_ready(self) -> bool:
        """One tick. Raises StartError on a hard filesystem error."""
        try:
            st = self.manifest_path.stat()
        except (FileNotFoundError, NotADirectoryError):
            return False
        except OSError as e:
            raise StartError(
                FailureKind.FILE_ACCESS,
                f"Cannot read output directory: {e}",
                self.identifier,
                error_class=ErrorClass.FILE_ACCESS,
            ) from e
        return stat.S_ISREG(st.st_mode)

    async def wait(self) -> Path:
        """Block until READY; raise StartError for every other outcome.

        Cancelling the awaiting task aborts the poller.
        """
        started = time.monotonic()
        try:
            while True:
                if self.state is PollerState.ABORTED:
                    raise self._abort_reason

                self.attempts += 1
                try:
                    found = self._manifest_ready()
                except StartError:
                    self.state = PollerState.ABORTED
                    raise
                if found and self.state is PollerState.POLLING:
                    self.state = PollerState.READY
                    logger.debug(
                        f"Manifest ready after {self.attempts} check(s): {self.manifest_path}"
                    )
                    return self.manifest_path

                elapsed = time.monotonic() - started
                if elapsed >= self.timeout:
                    self.state = PollerState.TIMED_OUT
                    raise StartError(
                        FailureKind.READINESS_TIMEOUT,
                        f"Stream did not produce a playlist within {self.timeout:g}s",
                        self.identifier,
                    )

                try:
                    await asyncio.wait_for(
                        self._abort_event.wait(),
                        timeout=min(self.interval, self.timeout - elapsed),
                    )
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            self.abort()
            raise
