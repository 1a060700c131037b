"""Prometheus metrics for the stream supervisor and segment server.

Provides metrics for:
- HTTP requests (count, latency)
- Stream lifecycle (start outcomes, stops, active processes)
- Transcoder failures (classified errors, forced kills)
- Segment serving (responses by status, traversal rejections)
- Shutdown passes by trigger
"""
from __future__ import annotations

import logging

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)

from . import __version__

logger = logging.getLogger(__name__)

app_info = Info("rtsp2hls_app", "Application information")
app_info.info({"name": "rtsp2hls", "version": __version__})

# ============================================================================
# HTTP Request Metrics
# ============================================================================

http_requests_total = Counter(
    "rtsp2hls_http_requests_total",
    "Total HTTP requests",
    ["method", "status"]
)

http_request_duration_seconds = Histogram(
    "rtsp2hls_http_request_duration_seconds",
    "HTTP request latency",
    ["method"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)
)

# ============================================================================
# Stream Lifecycle Metrics
# ============================================================================

streams_start_total = Counter(
    "rtsp2hls_stream_starts_total",
    "Stream start attempts by outcome",
    ["outcome"]  # ready, or a FailureKind value
)
streams_stop_total = Counter("rtsp2hls_stream_stops_total", "Stream stop requests")
transcoder_processes_active = Gauge("rtsp2hls_transcoder_processes_active", "Tracked transcoder processes")

readiness_wait_seconds = Histogram(
    "rtsp2hls_readiness_wait_seconds",
    "Time from spawn to manifest appearing",
    buckets=(0.5, 1.0, 2.0, 3.0, 5.0, 10.0, 20.0, 30.0)
)

# ============================================================================
# Failure Metrics
# ============================================================================

stream_errors_total = Counter(
    "rtsp2hls_stream_errors_total",
    "Classified transcoder errors",
    ["error_class"]
)
transcoder_forced_kills_total = Counter(
    "rtsp2hls_transcoder_forced_kills_total",
    "Processes that ignored termination and were killed"
)

# ============================================================================
# Segment Serving Metrics
# ============================================================================

segment_requests_total = Counter(
    "rtsp2hls_segment_requests_total",
    "Segment server responses",
    ["status"]
)
traversal_rejections_total = Counter(
    "rtsp2hls_traversal_rejections_total",
    "Requests rejected for escaping the output root"
)

shutdowns_total = Counter(
    "rtsp2hls_shutdowns_total",
    "Shutdown cleanup passes",
    ["trigger"]
)


def get_metrics() -> tuple[bytes, int, dict[str, str]]:
    """(body, status_code, headers) for a FastAPI Response."""
    try:
        return (generate_latest(REGISTRY), 200, {"Content-Type": CONTENT_TYPE_LATEST})
    except Exception as e:
        logger.error(f"Metrics generation failed: {e}", exc_info=True)
        return (b"# Error\n", 500, {"Content-Type": "text/plain"})


def track_http_request(method: str, status_code: int, duration_seconds: float) -> None:
    http_requests_total.labels(method=method, status=str(status_code)).inc()
    http_request_duration_seconds.labels(method=method).observe(duration_seconds)
