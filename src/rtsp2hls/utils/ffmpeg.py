"""FFmpeg command building and output file naming.

Pipeline:
    RTSP → FFmpeg (H.264/AAC encode) → <identifier>.m3u8 + <identifier>_NNNNN.ts

Logging Strategy:
    DEBUG - Command building, stale file removal
    WARN  - Stale files that could not be removed
"""
from __future__ import annotations

import logging
import re
from pathlib import Path

from ..config import ffmpeg_defaults
from ..models.stream import StreamRequest
from .strings import mask_rtsp_credentials

logger = logging.getLogger(__name__)


def build_hls_command(tool_path: str, request: StreamRequest, manifest_path: Path) -> list[str]:
    """Full argv for one stream.

    Command structure:
    1. Fixed low-latency input flags
    2. Input (-i <source>)
    3. Video encoder plus optional scale / bitrate / frame rate overrides
    4. Audio encoder, or -an when audio is disabled
    5. HLS muxer with segment length and playlist size from the request
    6. Manifest path

    Example:
        >>> cmd = build_hls_command("ffmpeg", request, Path("output/cam1.m3u8"))
        >>> cmd[-1]
        'output/cam1.m3u8'
    """
    options = request.options
    cmd = [tool_path]
    cmd.extend(ffmpeg_defaults.INPUT_FFMPEG_PARAMS)
    cmd.extend(["-i", request.source_url])

    cmd.extend(["-c:v", options.video_codec])
    cmd.extend(ffmpeg_defaults.VIDEO_ENCODER_PARAMS)
    if options.resolution:
        cmd.extend(["-s", options.resolution])
    if options.bitrate_kbps:
        cmd.extend(["-b:v", f"{options.bitrate_kbps}k"])
    if options.frame_rate:
        cmd.extend(["-r", str(options.frame_rate)])

    if options.audio_enabled:
        cmd.extend(["-c:a", options.audio_codec])
        cmd.extend(ffmpeg_defaults.AUDIO_ENCODER_PARAMS)
    else:
        cmd.append("-an")

    segment_pattern = manifest_path.parent / ffmpeg_defaults.SEGMENT_NAME_TEMPLATE.format(
        identifier=request.identifier
    )
    cmd.extend(ffmpeg_defaults.HLS_OUTPUT_PARAMS)
    cmd.extend([
        "-hls_time", str(options.segment_duration_seconds),
        "-hls_list_size", str(options.playlist_segment_count),
        "-hls_segment_filename", str(segment_pattern),
        "-y",
        str(manifest_path),
    ])

    logger.debug(
        f"Built ffmpeg command for {request.identifier}: "
        f"{mask_rtsp_credentials(' '.join(cmd))}"
    )
    return cmd


def stale_output_files(directory: Path, identifier: str) -> list[Path]:
    """Manifest and segments a previous run for this identifier left behind.

    Only exact <identifier>.m3u8 and <identifier>_<digits>.ts names match, so
    "cam1" never claims "cam10" or "cam1_b" files.
    """
    if not directory.is_dir():
        return []
    segment_name = re.compile(
        rf"^{re.escape(identifier)}_\d+{re.escape(ffmpeg_defaults.SEGMENT_SUFFIX)}$"
    )
    manifest_names = {
        f"{identifier}{ffmpeg_defaults.MANIFEST_SUFFIX}",
        f"{identifier}{ffmpeg_defaults.PARTIAL_MANIFEST_SUFFIX}",
    }
    return [
        path for path in directory.iterdir()
        if path.is_file() and (path.name in manifest_names or segment_name.match(path.name))
    ]


def remove_stale_output(directory: Path, identifier: str) -> int:
    """Delete stale files for identifier; returns how many were removed.

    Raises:
        OSError: A stale manifest exists but cannot be deleted
    """
    removed = 0
    for path in stale_output_files(directory, identifier):
        try:
            path.unlink()
            removed += 1
        except FileNotFoundError:
            continue
        except OSError:
            if path.suffix == ffmpeg_defaults.MANIFEST_SUFFIX:
                raise
            logger.warning(f"Could not remove stale segment {path}", exc_info=True)
    if removed:
        logger.debug(f"Removed {removed} stale file(s) for {identifier} in {directory}")
    return removed
