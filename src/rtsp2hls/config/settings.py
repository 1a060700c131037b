"""Runtime settings read from the environment.

Every knob has a safe default; an unparsable or out-of-range value is logged
and replaced by the default instead of aborting startup.

Environment:
    RTSP2HLS_HOST              Listen address (default: 127.0.0.1)
    RTSP2HLS_PORT              Listen port (default: 8080)
    RTSP2HLS_OUTPUT_DIR        Served root for manifests and segments (default: ./output)
    RTSP2HLS_TOOLS_DIR         Bundled ffmpeg location (default: ./ffmpeg/bin)
    RTSP2HLS_CONFIG_DIR        YAML store location (default: ./config)
    RTSP2HLS_POLL_INTERVAL     Readiness poll interval, seconds (default: 1.0)
    RTSP2HLS_READY_TIMEOUT     Readiness timeout, seconds (default: 30)
    RTSP2HLS_KILL_TIMEOUT      Terminate-to-kill delay, seconds (default: 3)
    RTSP2HLS_STOP_GRACE        Grace window after stop-all, seconds (default: 0.5)
    RTSP2HLS_SHUTDOWN_TIMEOUT  Bound on the whole shutdown pass, seconds (default: 10)
    RTSP2HLS_CI_DRY_RUN        Keep the YAML store in memory (default: false)
    LOG_LEVEL / LOG_FORMAT     See logging_config
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, Final, TypeVar

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

ENV_PREFIX: Final[str] = "RTSP2HLS_"
TRUE_VALUES: Final[frozenset[str]] = frozenset({"true", "1", "yes", "on"})

T = TypeVar("T")


class RuntimeSettings(BaseModel):
    """Process-wide settings, fixed for the lifetime of the server."""

    model_config = ConfigDict(frozen=True)

    host: str = "127.0.0.1"
    port: int = Field(default=8080, ge=1, le=65535)
    output_dir: Path = Path("./output")
    tools_dir: Path = Path("./ffmpeg/bin")
    config_dir: Path = Path("./config")
    poll_interval: float = Field(default=1.0, gt=0)
    ready_timeout: float = Field(default=30.0, gt=0)
    kill_timeout: float = Field(default=3.0, gt=0)
    stop_grace: float = Field(default=0.5, ge=0)
    shutdown_timeout: float = Field(default=10.0, gt=0)
    dry_run: bool = False
    log_level: str = "INFO"
    log_format: str = "text"

    @property
    def base_url(self) -> str:
        return f"http://localhost:{self.port}"

    @property
    def hls_url(self) -> str:
        """Prefix of every playback URL."""
        return f"{self.base_url}/hls"

    @property
    def api_url(self) -> str:
        return f"{self.base_url}/api"

    @classmethod
    def from_env(cls) -> RuntimeSettings:
        """Build settings from RTSP2HLS_* variables, falling back per field."""
        defaults = cls()
        return cls(
            host=os.getenv(f"{ENV_PREFIX}HOST", defaults.host),
            port=_env_number("PORT", defaults.port, int, minimum=1, maximum=65535),
            output_dir=Path(os.getenv(f"{ENV_PREFIX}OUTPUT_DIR", str(defaults.output_dir))),
            tools_dir=Path(os.getenv(f"{ENV_PREFIX}TOOLS_DIR", str(defaults.tools_dir))),
            config_dir=Path(os.getenv(f"{ENV_PREFIX}CONFIG_DIR", str(defaults.config_dir))),
            poll_interval=_env_number("POLL_INTERVAL", defaults.poll_interval, float, minimum=0.01),
            ready_timeout=_env_number("READY_TIMEOUT", defaults.ready_timeout, float, minimum=0.01),
            kill_timeout=_env_number("KILL_TIMEOUT", defaults.kill_timeout, float, minimum=0.01),
            stop_grace=_env_number("STOP_GRACE", defaults.stop_grace, float, minimum=0.0),
            shutdown_timeout=_env_number("SHUTDOWN_TIMEOUT", defaults.shutdown_timeout, float, minimum=0.01),
            dry_run=os.getenv(f"{ENV_PREFIX}CI_DRY_RUN", "").lower() in TRUE_VALUES,
            log_level=os.getenv("LOG_LEVEL", defaults.log_level),
            log_format=os.getenv("LOG_FORMAT", defaults.log_format),
        )


def _env_number(
    name: str,
    default: T,
    parse: Callable[[str], T],
    minimum: float | None = None,
    maximum: float | None = None,
) -> T:
    raw = os.getenv(f"{ENV_PREFIX}{name}")
    if raw is None or raw.strip() == "":
        return default
    try:
        value = parse(raw.strip())
    except ValueError:
        logger.warning(f"Invalid {ENV_PREFIX}{name}='{raw}', using {default}")
        return default
    if (minimum is not None and value < minimum) or (maximum is not None and value > maximum):
        logger.warning(f"{ENV_PREFIX}{name}={value} out of range, using {default}")
        return default
    return value
