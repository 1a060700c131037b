"""Read-only access to the output root for the segment server.

Every path that leaves this module has been resolved (symlinks included) and
checked to lie inside the root; anything else raises PathTraversalError.
Listings are rebuilt from the directory on each call, never cached.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Final

from ..config import ffmpeg_defaults
from .errors import PathTraversalError

logger = logging.getLogger(__name__)

CONTENT_TYPES: Final[dict[str, str]] = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".ts": "video/mp2t",
    ".m4s": "video/mp4",
    ".mp4": "video/mp4",
}
DEFAULT_CONTENT_TYPE: Final[str] = "application/octet-stream"


def content_type_for(path: Path | str) -> str:
    """MIME type by extension, case-insensitive."""
    return CONTENT_TYPES.get(Path(path).suffix.lower(), DEFAULT_CONTENT_TYPE)


class SegmentStore:
    """Files under one output root."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def resolve(self, relative: str) -> Path:
        """Absolute path for a request path, guaranteed inside the root.

        Raises:
            PathTraversalError: Resolved path escapes the root
            ValueError: Path is not representable (embedded NUL byte)

        Examples:
            >>> SegmentStore(Path("/srv/out")).resolve("/../../etc/passwd")
            Traceback (most recent call last):
            ...
            rtsp2hls.services.errors.PathTraversalError: /../../etc/passwd
        """
        root = self.root.resolve()
        candidate = (root / relative.lstrip("/\\")).resolve()
        try:
            candidate.relative_to(root)
        except ValueError:
            logger.warning(f"Rejected path outside output root: {relative!r}")
            raise PathTraversalError(relative) from None
        return candidate

    def read(self, relative: str) -> tuple[bytes, str]:
        """(content, content type) for a file under the root.

        Raises:
            PathTraversalError: Path escapes the root
            FileNotFoundError: Missing, a directory, or unreadable
            OSError: Any other read failure
        """
        path = self.resolve(relative)
        if path.is_dir():
            raise FileNotFoundError(str(path))
        try:
            content = path.read_bytes()
        except PermissionError as e:
            raise FileNotFoundError(str(path)) from e
        return content, content_type_for(path)

    def relative_url_path(self, path: Path) -> str:
        """Path below the root as it appears after /hls/."""
        return path.relative_to(self.root.resolve()).as_posix()

    def list_manifests(self) -> list[Path]:
        """Manifests anywhere under the root, sorted by relative path."""
        if not self.root.is_dir():
            return []
        root = self.root.resolve()
        manifests = []
        for candidate in root.rglob(f"*{ffmpeg_defaults.MANIFEST_SUFFIX}"):
            try:
                path = self.resolve(candidate.relative_to(root).as_posix())
            except PathTraversalError:
                continue
            if path.is_file():
                manifests.append(path)
        return sorted(manifests, key=lambda p: p.relative_to(root).parts)

    def find_manifest(self, identifier: str) -> Path | None:
        """Manifest for identifier, directly under the root or in a subdirectory."""
        name = f"{identifier}{ffmpeg_defaults.MANIFEST_SUFFIX}"
        try:
            direct = self.resolve(name)
        except (PathTraversalError, ValueError):
            return None
        if direct.is_file():
            return direct
        for path in self.list_manifests():
            if path.name == name:
                return path
        return None

    def manifest_exists(self, identifier: str) -> bool:
        return self.find_manifest(identifier) is not None
