"""Locate and verify the ffmpeg binary.

Search order:
    1. Bundled copy under the configured tools directory
    2. First ffmpeg on PATH

A candidate counts only if `<candidate> -version` exits 0 within the probe
timeout. The check runs before every start, so a binary removed while the
server is up is reported as unavailable instead of as a spawn failure.
"""
from __future__ import annotations

import asyncio
import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Final

from ..models.control import ToolCheckResult

logger = logging.getLogger(__name__)

TOOL_NAME: Final[str] = "ffmpeg"
DEFAULT_PROBE_TIMEOUT: Final[float] = 5.0


def executable_name(name: str = TOOL_NAME) -> str:
    return f"{name}.exe" if os.name == "nt" else name


def candidate_paths(tools_dir: Path, name: str = TOOL_NAME) -> list[tuple[str, bool]]:
    """(path, is_bundled) pairs in search order, without duplicates."""
    candidates: list[tuple[str, bool]] = []
    bundled = tools_dir / executable_name(name)
    if bundled.is_file():
        candidates.append((str(bundled.resolve()), True))

    on_path = shutil.which(name)
    if on_path and all(Path(on_path).resolve() != Path(existing) for existing, _ in candidates):
        candidates.append((on_path, False))
    return candidates


async def probe_version(path: str, timeout_seconds: float = DEFAULT_PROBE_TIMEOUT) -> str | None:
    """First line of `<path> -version`, or None when the binary does not run."""
    try:
        process = await asyncio.create_subprocess_exec(
            path, "-version",
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except OSError as e:
        logger.debug(f"Cannot execute {path}: {e}")
        return None

    try:
        stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        logger.debug(f"{path} -version timed out after {timeout_seconds}s")
        process.kill()
        await process.wait()
        return None

    if process.returncode != 0:
        logger.debug(f"{path} -version exited with {process.returncode}")
        return None

    first_line = stdout.decode("utf-8", errors="replace").splitlines()
    return first_line[0].strip() if first_line else ""


class ToolLocator:
    """Finds a working transcoder binary."""

    def __init__(
        self,
        tools_dir: Path,
        name: str = TOOL_NAME,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
    ) -> None:
        self.tools_dir = tools_dir
        self.name = name
        self.probe_timeout = probe_timeout

    async def check(self) -> ToolCheckResult:
        """Probe candidates in order and report the first that works."""
        candidates = candidate_paths(self.tools_dir, self.name)
        for path, bundled in candidates:
            version = await probe_version(path, self.probe_timeout)
            if version is not None:
                logger.debug(f"Using {'bundled' if bundled else 'system'} {self.name}: {path}")
                return ToolCheckResult(available=True, using_local=bundled, path=path, version=version)
            logger.warning(f"{self.name} candidate failed verification: {path}")

        if candidates:
            error = f"{self.name} was found but could not be executed"
        else:
            error = f"{self.name} not found in {self.tools_dir} or on PATH"
        return ToolCheckResult(available=False, error=error)

    __call__ = check
