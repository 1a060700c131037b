"""
Unit tests for ReadinessPoller.

Tests the READY / TIMED_OUT / ABORTED transitions and filesystem errors.
"""

import asyncio
from pathlib import Path
from unittest.mock import patch

import pytest

from rtsp2hls.services.errors import ErrorClass, FailureKind, StartError
from rtsp2hls.services.readiness import PollerState, ReadinessPoller


class TestReadinessPoller:
    """Tests for ReadinessPoller.wait() and abort()."""

    async def test_ready_when_manifest_already_exists(self, tmp_path):
        """Should return on the first check."""
        manifest = tmp_path / "cam1.m3u8"
        manifest.write_text("#EXTM3U")
        poller = ReadinessPoller(manifest, interval=0.01, timeout=1.0)

        assert await poller.wait() == manifest
        assert poller.state is PollerState.READY
        assert poller.attempts == 1

    async def test_ready_when_manifest_appears_later(self, tmp_path):
        """Should keep polling until the file is written."""
        manifest = tmp_path / "cam1.m3u8"
        poller = ReadinessPoller(manifest, interval=0.01, timeout=2.0)
        asyncio.get_running_loop().call_later(0.05, manifest.write_text, "#EXTM3U")

        assert await poller.wait() == manifest
        assert poller.attempts > 1

    async def test_times_out(self, tmp_path):
        """Should raise READINESS_TIMEOUT when nothing appears."""
        poller = ReadinessPoller(tmp_path / "cam1.m3u8", interval=0.01, timeout=0.05, identifier="cam1")

        with pytest.raises(StartError) as exc_info:
            await poller.wait()

        assert exc_info.value.kind is FailureKind.READINESS_TIMEOUT
        assert exc_info.value.identifier == "cam1"
        assert poller.state is PollerState.TIMED_OUT

    async def test_directory_does_not_count_as_manifest(self, tmp_path):
        """Should only accept a regular file."""
        (tmp_path / "cam1.m3u8").mkdir()
        poller = ReadinessPoller(tmp_path / "cam1.m3u8", interval=0.01, timeout=0.05)

        with pytest.raises(StartError) as exc_info:
            await poller.wait()

        assert exc_info.value.kind is FailureKind.READINESS_TIMEOUT

    async def test_abort_rejects_pending_wait(self, tmp_path):
        """Should end the wait with STOPPED_DURING_STARTUP by default."""
        poller = ReadinessPoller(tmp_path / "cam1.m3u8", interval=1.0, timeout=30.0)
        waiter = asyncio.create_task(poller.wait())
        await asyncio.sleep(0.01)

        assert poller.abort() is True

        with pytest.raises(StartError) as exc_info:
            await waiter
        assert exc_info.value.kind is FailureKind.STOPPED_DURING_STARTUP

    async def test_abort_carries_reason(self, tmp_path):
        """Should raise the error given to abort()."""
        poller = ReadinessPoller(tmp_path / "cam1.m3u8", interval=1.0, timeout=30.0)
        reason = StartError(FailureKind.CONNECTION, "unreachable", "cam1", ErrorClass.CONNECTION)
        poller.abort(reason)

        with pytest.raises(StartError) as exc_info:
            await poller.wait()

        assert exc_info.value is reason

    async def test_only_first_terminal_transition_counts(self, tmp_path):
        """Should ignore abort() after READY."""
        manifest = tmp_path / "cam1.m3u8"
        manifest.write_text("#EXTM3U")
        poller = ReadinessPoller(manifest, interval=0.01, timeout=1.0)
        await poller.wait()

        assert poller.abort() is False
        assert poller.state is PollerState.READY

    async def test_permission_error_is_file_access(self, tmp_path):
        """Should stop immediately on a hard filesystem error."""
        poller = ReadinessPoller(tmp_path / "cam1.m3u8", interval=0.01, timeout=5.0)

        with patch.object(Path, "stat", side_effect=PermissionError(13, "Permission denied")):
            with pytest.raises(StartError) as exc_info:
                await poller.wait()

        assert exc_info.value.kind is FailureKind.FILE_ACCESS
        assert exc_info.value.error_class is ErrorClass.FILE_ACCESS
        assert poller.attempts == 1

    async def test_cancel_aborts_poller(self, tmp_path):
        """Should move to ABORTED when the waiting task is cancelled."""
        poller = ReadinessPoller(tmp_path / "cam1.m3u8", interval=1.0, timeout=30.0)
        waiter = asyncio.create_task(poller.wait())
        await asyncio.sleep(0.01)

        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        assert poller.state is PollerState.ABORTED
