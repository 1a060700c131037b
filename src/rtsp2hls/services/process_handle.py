"""State for one spawned transcoder process.

A ProcessHandle is created when a start request is accepted (before the
process exists, so the identifier is claimed across the awaits of the tool
check and the spawn) and is dropped once the process has been reaped.

Diagnostic text:
    stderr arrives in arbitrary chunks. feed() appends every chunk to the
    diagnostic buffer and returns only complete lines; ffmpeg ends progress
    lines with a bare carriage return, so both \\r and \\n terminate a line.
    The buffer keeps the most recent MAX_DIAGNOSTIC_CHARS characters.
"""
from __future__ import annotations

import asyncio
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Final

from .errors import ErrorClass

MAX_DIAGNOSTIC_CHARS: Final[int] = 64 * 1024
LINE_BREAK: Final[re.Pattern[str]] = re.compile(r"\r\n|\r|\n")


class ProcessHandle:
    """One transcoder process and everything learned about it."""

    def __init__(self, identifier: str, manifest_path: Path, playback_url: str) -> None:
        self.identifier = identifier
        self.manifest_path = manifest_path
        self.playback_url = playback_url

        self.process: Any = None
        self.command_line: list[str] = []
        self.spawned_at: datetime | None = None

        self.current_error_class: ErrorClass | None = None
        self.has_emitted_startup_marker = False
        self.ready = False
        self.stop_requested = False
        self.awaiting_reap = False
        self.termination_sent = False
        self.last_exit_code: int | None = None

        self.exit_task: asyncio.Task | None = None
        self.kill_timer: asyncio.TimerHandle | None = None

        self._diagnostics: list[str] = []
        self._diagnostic_chars = 0
        self._partial_line = ""

    def __repr__(self) -> str:
        return f"ProcessHandle(identifier={self.identifier!r}, pid={self.pid}, ready={self.ready})"

    # ------------------------------------------------------------------
    # Process
    # ------------------------------------------------------------------

    def attach(self, process: Any, command_line: list[str]) -> None:
        self.process = process
        self.command_line = command_line
        self.spawned_at = datetime.now(timezone.utc)

    @property
    def pid(self) -> int | None:
        return getattr(self.process, "pid", None)

    @property
    def is_alive(self) -> bool:
        return self.process is not None and self.process.returncode is None

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def feed(self, text: str) -> list[str]:
        """Append a decoded stderr chunk; return the lines it completed."""
        if not text:
            return []
        self._append(text)

        pieces = LINE_BREAK.split(self._partial_line + text)
        self._partial_line = pieces.pop()
        return [line for line in pieces if line.strip()]

    def flush(self) -> list[str]:
        """Return the trailing unterminated line, if any."""
        tail, self._partial_line = self._partial_line, ""
        return [tail] if tail.strip() else []

    def _append(self, text: str) -> None:
        self._diagnostics.append(text)
        self._diagnostic_chars += len(text)
        while self._diagnostic_chars > MAX_DIAGNOSTIC_CHARS and len(self._diagnostics) > 1:
            dropped = self._diagnostics.pop(0)
            self._diagnostic_chars -= len(dropped)

    @property
    def diagnostic_text(self) -> str:
        text = "".join(self._diagnostics)
        return text[-MAX_DIAGNOSTIC_CHARS:]

    # ------------------------------------------------------------------
    # Classification state
    # ------------------------------------------------------------------

    def mark_started(self) -> bool:
        """Record the first startup marker. Returns True on the transition."""
        if self.has_emitted_startup_marker:
            return False
        self.has_emitted_startup_marker = True
        self.current_error_class = None
        return True

    def record_error(self, error_class: ErrorClass) -> ErrorClass:
        """Store a classification; matches after startup become RUNTIME_FAILURE."""
        if self.has_emitted_startup_marker:
            error_class = ErrorClass.RUNTIME_FAILURE
        self.current_error_class = error_class
        return error_class
