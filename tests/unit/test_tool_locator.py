"""
Unit tests for ffmpeg discovery (bundled copy first, then PATH).
"""

from unittest.mock import AsyncMock, patch

from rtsp2hls.services.tool_locator import ToolLocator, candidate_paths, executable_name


class TestCandidatePaths:
    """Tests for candidate_paths()."""

    def test_bundled_before_path(self, tmp_path):
        bundled = tmp_path / executable_name()
        bundled.write_text("")

        with patch("rtsp2hls.services.tool_locator.shutil.which", return_value="/usr/bin/ffmpeg"):
            candidates = candidate_paths(tmp_path)

        assert candidates == [(str(bundled.resolve()), True), ("/usr/bin/ffmpeg", False)]

    def test_path_only(self, tmp_path):
        with patch("rtsp2hls.services.tool_locator.shutil.which", return_value="/usr/bin/ffmpeg"):
            assert candidate_paths(tmp_path) == [("/usr/bin/ffmpeg", False)]

    def test_nothing_found(self, tmp_path):
        with patch("rtsp2hls.services.tool_locator.shutil.which", return_value=None):
            assert candidate_paths(tmp_path) == []


class TestToolLocator:
    """Tests for ToolLocator.check()."""

    async def test_uses_bundled_copy_when_it_runs(self, tmp_path):
        with patch("rtsp2hls.services.tool_locator.candidate_paths",
                   return_value=[("/app/ffmpeg/bin/ffmpeg", True), ("/usr/bin/ffmpeg", False)]), \
             patch("rtsp2hls.services.tool_locator.probe_version",
                   new=AsyncMock(return_value="ffmpeg version 6.1")):
            result = await ToolLocator(tmp_path).check()

        assert result.available is True
        assert result.using_local is True
        assert result.path == "/app/ffmpeg/bin/ffmpeg"
        assert result.version == "ffmpeg version 6.1"

    async def test_falls_back_to_path_when_bundled_fails(self, tmp_path):
        probe = AsyncMock(side_effect=[None, "ffmpeg version 5.1"])
        with patch("rtsp2hls.services.tool_locator.candidate_paths",
                   return_value=[("/app/ffmpeg/bin/ffmpeg", True), ("/usr/bin/ffmpeg", False)]), \
             patch("rtsp2hls.services.tool_locator.probe_version", new=probe):
            result = await ToolLocator(tmp_path).check()

        assert result.available is True
        assert result.using_local is False
        assert result.path == "/usr/bin/ffmpeg"
        assert probe.await_count == 2

    async def test_unavailable_when_not_found(self, tmp_path):
        with patch("rtsp2hls.services.tool_locator.candidate_paths", return_value=[]):
            result = await ToolLocator(tmp_path)()

        assert result.available is False
        assert "not found" in result.error

    async def test_unavailable_when_nothing_runs(self, tmp_path):
        with patch("rtsp2hls.services.tool_locator.candidate_paths", return_value=[("/usr/bin/ffmpeg", False)]), \
             patch("rtsp2hls.services.tool_locator.probe_version", new=AsyncMock(return_value=None)):
            result = await ToolLocator(tmp_path).check()

        assert result.available is False
        assert "could not be executed" in result.error
