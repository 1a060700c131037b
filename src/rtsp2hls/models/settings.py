"""Persisted configuration models.

- StreamConfig: A saved camera with its encoder choices
- NewStreamConfig / EditStreamConfig: Create and PATCH payloads
- AppSettings: Global UI settings

Runtime status is never part of these models; it is always derived from the
supervisor.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal

from pydantic import Field

from .base import CamelModel
from .stream import EncodingOptions, StreamRequest


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class AppSettings(CamelModel):
    output_directory: str = "./output"
    log_level: Literal["debug", "info", "warn", "error"] = "info"
    auto_start: bool = False
    max_concurrent_streams: int = Field(default=5, ge=1, le=64)
    hls_segment_duration: int = Field(default=1, ge=1, le=60)
    hls_playlist_size: int = Field(default=3, ge=1, le=100)


class NewStreamConfig(CamelModel):
    name: str = Field(min_length=1, max_length=50, examples=["Front Door"])
    rtsp_url: str = Field(min_length=1, examples=["rtsp://192.168.1.20:554/stream1"])
    resolution: str = "original"
    bitrate: str = "2000k"
    frame_rate: int = Field(default=25, ge=1, le=120)
    audio_enabled: bool = False


class StreamConfig(NewStreamConfig):
    id: str = Field(default_factory=lambda: f"stream_{uuid.uuid4().hex[:12]}")
    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    def to_request(self, settings: AppSettings, output_root: Path) -> StreamRequest:
        """Start request for this camera using the global HLS settings."""
        return StreamRequest(
            identifier=self.id,
            source_url=self.rtsp_url,
            output_directory=output_root,
            options=EncodingOptions(
                resolution=self.resolution,
                bitrate_kbps=self.bitrate,
                frame_rate=self.frame_rate,
                audio_enabled=self.audio_enabled,
                segment_duration_seconds=settings.hls_segment_duration,
                playlist_segment_count=settings.hls_playlist_size,
            ),
        )


class EditStreamConfig(CamelModel):
    """PATCH semantics: only provided fields change."""

    name: str | None = Field(default=None, min_length=1, max_length=50)
    rtsp_url: str | None = Field(default=None, min_length=1)
    resolution: str | None = None
    bitrate: str | None = None
    frame_rate: int | None = Field(default=None, ge=1, le=120)
    audio_enabled: bool | None = None


class EditAppSettings(CamelModel):
    """PATCH semantics for AppSettings."""

    output_directory: str | None = None
    log_level: Literal["debug", "info", "warn", "error"] | None = None
    auto_start: bool | None = None
    max_concurrent_streams: int | None = Field(default=None, ge=1, le=64)
    hls_segment_duration: int | None = Field(default=None, ge=1, le=60)
    hls_playlist_size: int | None = Field(default=None, ge=1, le=100)
