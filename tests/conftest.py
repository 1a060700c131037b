"""
Shared fixtures for supervisor, lifecycle and HTTP tests.

Transcoder processes are replaced by FakeProcess objects handed out by a
FakeSpawner through the supervisor's spawn hook; stderr and stdout are real
asyncio.StreamReader instances fed by the test.
"""

import asyncio
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from rtsp2hls.config.settings import RuntimeSettings
from rtsp2hls.main import create_app
from rtsp2hls.models.control import ToolCheckResult


class FakeProcess:
    """Stand-in for asyncio.subprocess.Process."""

    def __init__(self, pid: int, ignore_terminate: bool = False):
        self.pid = pid
        self.returncode = None
        self.ignore_terminate = ignore_terminate
        self.stderr = asyncio.StreamReader()
        self.stdout = asyncio.StreamReader()
        self.terminate_calls = 0
        self.kill_calls = 0
        self._exited = asyncio.Event()

    def emit(self, text: str) -> None:
        """Write diagnostic text to stderr."""
        self.stderr.feed_data(text.encode("utf-8"))

    def exit(self, code: int = 0) -> None:
        if self.returncode is not None:
            return
        self.returncode = code
        self.stderr.feed_eof()
        self.stdout.feed_eof()
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode

    def terminate(self) -> None:
        self.terminate_calls += 1
        if not self.ignore_terminate:
            self.exit(-15)

    def kill(self) -> None:
        self.kill_calls += 1
        self.exit(-9)


class FakeSpawner:
    """Records every command line and returns FakeProcess objects.

    Args:
        write_manifest: Create the manifest (last argv item) at spawn time
        on_spawn: Called with (process, argv) after the process is created
        error: Raised instead of spawning
    """

    def __init__(self, write_manifest=False, on_spawn=None, error=None, ignore_terminate=False):
        self.write_manifest = write_manifest
        self.on_spawn = on_spawn
        self.error = error
        self.ignore_terminate = ignore_terminate
        self.calls = []
        self.processes = []

    async def __call__(self, *argv, **kwargs):
        self.calls.append(list(argv))
        if self.error is not None:
            raise self.error
        process = FakeProcess(pid=1000 + len(self.calls), ignore_terminate=self.ignore_terminate)
        self.processes.append(process)
        if self.write_manifest:
            write_manifest(Path(argv[-1]))
        if self.on_spawn is not None:
            self.on_spawn(process, list(argv))
        return process


def write_manifest(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("#EXTM3U\n#EXT-X-VERSION:3\n#EXT-X-TARGETDURATION:1\n")
    return path


@pytest.fixture
def settings(tmp_path):
    """Runtime settings with short timeouts and an in-memory config store."""
    return RuntimeSettings(
        port=8080,
        output_dir=tmp_path / "output",
        tools_dir=tmp_path / "tools",
        config_dir=tmp_path / "config",
        poll_interval=0.01,
        ready_timeout=0.5,
        kill_timeout=0.2,
        stop_grace=0.0,
        shutdown_timeout=2.0,
        dry_run=True,
    )


@pytest.fixture
def available_tool():
    async def check():
        return ToolCheckResult(available=True, using_local=False, path="ffmpeg", version="ffmpeg version 6.1")
    return check


@pytest.fixture
def missing_tool():
    async def check():
        return ToolCheckResult(available=False, error="ffmpeg not found in ./ffmpeg/bin or on PATH")
    return check


@pytest.fixture
def spawner_factory():
    return FakeSpawner


@pytest.fixture
def manifest_writer():
    return write_manifest


@pytest.fixture
def eventually():
    """Poll a predicate until it holds or the timeout expires."""
    async def wait(predicate, timeout=2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.01)
    return wait


@pytest.fixture
def make_app(settings, available_tool):
    """Build the FastAPI app around a FakeSpawner (manifests appear on spawn)."""
    def build(spawner=None, tool_checker=None, **overrides):
        effective = settings.model_copy(update=overrides) if overrides else settings
        return create_app(
            effective,
            spawn=spawner or FakeSpawner(write_manifest=True),
            tool_checker=tool_checker or available_tool,
        )
    return build


@pytest.fixture
def client(make_app):
    with TestClient(make_app()) as test_client:
        yield test_client
