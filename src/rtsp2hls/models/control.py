"""Result models returned by the control interface.

Each mirrors the plain result dictionaries the UI consumes; fields that do
not apply to an outcome stay None and are dropped from the JSON.
"""
from __future__ import annotations

from pydantic import Field

from .base import CamelModel
from .stream import EncodingOptions


class StartStreamBody(CamelModel):
    """POST /api/control/streams/{id}/start payload."""

    source_url: str = Field(min_length=1)
    output_directory: str | None = None
    options: EncodingOptions = Field(default_factory=EncodingOptions)


class StartStreamResult(CamelModel):
    success: bool
    output_path: str | None = None
    playback_url: str | None = None
    error: str | None = None
    error_type: str | None = None


class SuccessResult(CamelModel):
    success: bool


class ProcessStatus(CamelModel):
    running: bool
    pid: int | None = None


class ToolCheckResult(CamelModel):
    """Outcome of probing for the transcoding binary."""

    available: bool
    using_local: bool | None = None
    path: str | None = None
    version: str | None = None
    error: str | None = None


class ServerInfo(CamelModel):
    port: int
    base_url: str
    hls_url: str
    api_url: str
    running: bool
