"""
Unit tests for diagnostic classification and ProcessHandle line handling.
"""

from pathlib import Path

import pytest

from rtsp2hls.services.diagnostics import (
    ERROR_MESSAGES,
    classify,
    classify_exit,
    describe,
    is_startup_marker,
)
from rtsp2hls.services.errors import ErrorClass
from rtsp2hls.services.process_handle import MAX_DIAGNOSTIC_CHARS, ProcessHandle


class TestClassify:
    """Tests for classify()."""

    @pytest.mark.parametrize("line, expected", [
        ("[tcp @ 0x1] Connection to tcp://10.0.0.5:554 failed: Connection refused", ErrorClass.CONNECTION),
        ("[tcp @ 0x1] Connection timed out", ErrorClass.CONNECTION),
        ("rtsp://cam/live: Invalid data found when processing input", ErrorClass.PROTOCOL),
        ("htsp://cam/live: Protocol not found", ErrorClass.PROTOCOL),
        ("output/cam1.m3u8: No such file or directory", ErrorClass.FILE_ACCESS),
        ("method DESCRIBE failed: 401 Unauthorized", ErrorClass.AUTH),
        ("method DESCRIBE failed: 404 Not Found", ErrorClass.NOT_FOUND),
    ])
    def test_signatures(self, line, expected):
        assert classify(line) is expected

    def test_auth_wins_over_connection(self):
        """Should pick the first signature in table order."""
        assert classify("401 Unauthorized (Connection refused on retry)") is ErrorClass.AUTH

    def test_no_match_returns_none(self):
        assert classify("frame=  120 fps= 25 q=23.0 size=N/A time=00:00:04.80") is None
        assert classify("") is None

    def test_signatures_are_case_sensitive(self):
        assert classify("connection refused") is None


class TestStartupMarkers:
    """Tests for is_startup_marker() and classify_exit()."""

    @pytest.mark.parametrize("line", [
        "Stream mapping:",
        "Press [q] to stop, [?] for help",
        "[hls @ 0x2] Opening 'output/cam1_00000.ts' for writing",
    ])
    def test_markers(self, line):
        assert is_startup_marker(line)

    def test_error_lines_are_not_markers(self):
        assert not is_startup_marker("Connection refused")

    def test_classify_exit(self):
        assert classify_exit(0, started=True) is None
        assert classify_exit(1, started=True) is ErrorClass.RUNTIME_FAILURE
        assert classify_exit(1, started=False) is ErrorClass.UNKNOWN

    def test_every_class_has_guidance(self):
        for error_class in ErrorClass:
            assert describe(error_class) == ERROR_MESSAGES[error_class]


class TestProcessHandle:
    """Tests for ProcessHandle.feed() and classification state."""

    @pytest.fixture
    def handle(self):
        return ProcessHandle("cam1", Path("output/cam1.m3u8"), "http://localhost:8080/hls/cam1.m3u8")

    def test_feed_returns_complete_lines_only(self, handle):
        """Should hold back a partial line until its terminator arrives."""
        assert handle.feed("Connection ") == []
        assert handle.feed("refused\nframe=1") == ["Connection refused"]
        assert handle.flush() == ["frame=1"]
        assert handle.flush() == []

    def test_carriage_return_ends_a_line(self, handle):
        """Should split progress lines terminated by a bare CR."""
        lines = handle.feed("frame=1\rframe=2\r\nStream mapping:\n\n")
        assert lines == ["frame=1", "frame=2", "Stream mapping:"]

    def test_diagnostic_text_keeps_everything_fed(self, handle):
        handle.feed("first\n")
        handle.feed("second")
        assert handle.diagnostic_text == "first\nsecond"

    def test_diagnostic_text_is_capped(self, handle):
        for _ in range(10):
            handle.feed("x" * (MAX_DIAGNOSTIC_CHARS // 4) + "\n")
        assert len(handle.diagnostic_text) <= MAX_DIAGNOSTIC_CHARS

    def test_marker_clears_error_once(self, handle):
        """Should clear the class on the first marker only."""
        handle.record_error(ErrorClass.CONNECTION)

        assert handle.mark_started() is True
        assert handle.current_error_class is None
        assert handle.mark_started() is False

    def test_error_after_marker_is_runtime_failure(self, handle):
        handle.mark_started()
        assert handle.record_error(ErrorClass.PROTOCOL) is ErrorClass.RUNTIME_FAILURE
        assert handle.current_error_class is ErrorClass.RUNTIME_FAILURE

    def test_later_classification_overwrites_earlier(self, handle):
        handle.record_error(ErrorClass.CONNECTION)
        handle.record_error(ErrorClass.AUTH)
        assert handle.current_error_class is ErrorClass.AUTH

    def test_not_alive_without_process(self, handle):
        assert handle.pid is None
        assert handle.is_alive is False
