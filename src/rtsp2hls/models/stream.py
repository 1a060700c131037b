"""Stream data models for the supervisor.

Defines Pydantic v2 models for the life of one transcoded stream:
- EncodingOptions: Per-request encoder overrides
- StreamRequest: Immutable start request (frozen)
- StreamReadyInfo: Result of a successful start
- StreamStatusRecord: Derived, never persisted status snapshot
- StreamEvent: Status-changed notification
- StreamErrorRecord: Last classified failure, kept after the process is gone

Field Validation:
- Identifier is used as a file name stem, so path separators are rejected
- Source URL must be non-empty
- Resolution is WIDTHxHEIGHT; "original" means no scaling
- Bitrate accepts 2500, "2500k" or "2.5M"
"""
from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import ConfigDict, Field, field_validator

from ..config import ffmpeg_defaults
from ..services.errors import ErrorClass
from ..utils.strings import is_safe_identifier
from .base import CamelModel

RESOLUTION_PATTERN = re.compile(r"^\d{2,5}x\d{2,5}$")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Start Request
# ============================================================================

class EncodingOptions(CamelModel):
    """Encoder overrides. None means keep the transcoder's own behaviour."""

    model_config = ConfigDict(frozen=True)

    video_codec: str = Field(default=ffmpeg_defaults.DEFAULT_VIDEO_CODEC, min_length=1)
    audio_codec: str = Field(default=ffmpeg_defaults.DEFAULT_AUDIO_CODEC, min_length=1)
    resolution: str | None = Field(default=None, examples=["1280x720"])
    bitrate_kbps: int | None = Field(default=None, gt=0, examples=[2500])
    frame_rate: int | None = Field(default=None, ge=1, le=120)
    audio_enabled: bool = True
    segment_duration_seconds: int = Field(default=ffmpeg_defaults.DEFAULT_SEGMENT_SECONDS, ge=1, le=60)
    playlist_segment_count: int = Field(default=ffmpeg_defaults.DEFAULT_PLAYLIST_SIZE, ge=1, le=100)

    @field_validator("resolution", mode="before")
    @classmethod
    def normalize_resolution(cls, value: Any) -> Any:
        if value is None:
            return None
        text = str(value).strip().lower()
        if text in ("", "original"):
            return None
        if not RESOLUTION_PATTERN.match(text):
            raise ValueError("Resolution must look like 1280x720")
        return text

    @field_validator("bitrate_kbps", mode="before")
    @classmethod
    def parse_bitrate(cls, value: Any) -> Any:
        """Accept 2500, "2500", "2500k" or "2.5M"."""
        if value is None or isinstance(value, int):
            return value
        text = str(value).strip().lower()
        if not text:
            return None
        try:
            if text.endswith("m"):
                return int(float(text[:-1]) * 1000)
            if text.endswith("k"):
                return int(float(text[:-1]))
            return int(float(text))
        except ValueError:
            raise ValueError(f"Unrecognised bitrate '{value}'") from None


class StreamRequest(CamelModel):
    """Everything needed to start one stream. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    identifier: str = Field(min_length=1, max_length=128, examples=["cam1"])
    source_url: str = Field(min_length=1, examples=["rtsp://192.168.1.20:554/stream1"])
    output_directory: Path | None = Field(
        default=None,
        description="Where the manifest is written (defaults to the served output root)",
    )
    options: EncodingOptions = Field(default_factory=EncodingOptions)

    @field_validator("identifier")
    @classmethod
    def validate_identifier(cls, value: str) -> str:
        if not is_safe_identifier(value):
            raise ValueError("Identifier must not contain path separators or be '.'/'..'")
        return value

    @field_validator("source_url")
    @classmethod
    def validate_source_url(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Source URL must not be blank")
        return value.strip()

    @property
    def manifest_name(self) -> str:
        return f"{self.identifier}{ffmpeg_defaults.MANIFEST_SUFFIX}"


class StreamReadyInfo(CamelModel):
    """Returned by a start that reached readiness."""

    identifier: str
    playback_url: str
    manifest_path: str


# ============================================================================
# Status
# ============================================================================

class StreamPhase(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"
    STOPPED = "stopped"


class StreamStatusRecord(CamelModel):
    """Snapshot of one identifier, derived on demand."""

    identifier: str
    phase: StreamPhase
    output_manifest_path: str | None = None
    playback_url: str | None = None
    error_class: ErrorClass | None = None
    error_message: str | None = None
    started_at: datetime | None = None
    pid: int | None = None


class StreamEvent(CamelModel):
    """Status-changed notification delivered to subscribers."""

    identifier: str
    phase: StreamPhase
    error_class: ErrorClass | None = None
    error_message: str | None = None
    timestamp: datetime = Field(default_factory=utc_now)


class StreamErrorRecord(CamelModel):
    """Last classified failure for an identifier."""

    type: ErrorClass
    message: str
    full_output: str = ""
    timestamp: datetime = Field(default_factory=utc_now)
