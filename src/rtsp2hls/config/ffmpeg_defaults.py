"""FFmpeg parameters for low-latency RTSP to HLS conversion.

Single source of truth for the fixed part of every transcoder command line.
Request options (resolution, bitrate, frame rate, audio) are layered on top by
utils.ffmpeg.build_hls_command and only override when present.

Log Level:
    The transcoder must run at its default "info" verbosity. Startup markers
    ("Stream mapping", "Press [q] to stop") are printed at that level only.
"""
from typing import Final

# ============================================================================
# Input Parameters
# ============================================================================

INPUT_FFMPEG_PARAMS: Final[list[str]] = [
    '-hide_banner',
    '-fflags', 'nobuffer+fastseek+flush_packets',
    '-flags', 'low_delay',
    '-probesize', '32',
    '-analyzeduration', '100000',
    '-max_delay', '0',
    '-rtsp_transport', 'tcp',
]
"""Placed before -i. Minimal probing and buffering on the RTSP input."""

# ============================================================================
# Encoder Parameters
# ============================================================================

VIDEO_ENCODER_PARAMS: Final[list[str]] = [
    '-preset', 'ultrafast',
    '-tune', 'zerolatency',
    '-g', '15',
    '-keyint_min', '15',
    '-sc_threshold', '0',
]
"""Short fixed GOP so every segment starts on a keyframe."""

AUDIO_ENCODER_PARAMS: Final[list[str]] = [
    '-ac', '2',
    '-ar', '44100',
]

DEFAULT_VIDEO_CODEC: Final[str] = 'libx264'
DEFAULT_AUDIO_CODEC: Final[str] = 'aac'

# ============================================================================
# HLS Muxer Parameters
# ============================================================================

DEFAULT_SEGMENT_SECONDS: Final[int] = 1
DEFAULT_PLAYLIST_SIZE: Final[int] = 3

HLS_OUTPUT_PARAMS: Final[list[str]] = [
    '-f', 'hls',
    '-hls_flags', 'delete_segments+independent_segments',
    '-hls_segment_type', 'mpegts',
    '-hls_allow_cache', '0',
]
"""Rolling playlist; expired segments are deleted by the muxer itself."""

MANIFEST_SUFFIX: Final[str] = '.m3u8'
SEGMENT_SUFFIX: Final[str] = '.ts'
PARTIAL_MANIFEST_SUFFIX: Final[str] = MANIFEST_SUFFIX + '.tmp'
SEGMENT_NAME_TEMPLATE: Final[str] = '{identifier}_%05d' + SEGMENT_SUFFIX
"""Segment names are <identifier>_<index>.ts next to the manifest."""
