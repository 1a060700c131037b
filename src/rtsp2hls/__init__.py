"""rtsp2hls: RTSP camera feeds to HLS playlists, supervised and served locally."""

__version__ = "1.0.0"
