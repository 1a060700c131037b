"""Classification of transcoder diagnostic output.

The transcoder reports problems only as free-form English text on stderr.
This module is the single place that maps that text onto ErrorClass, so the
signature table can be tested without any process plumbing.

Signature Order:
    First match wins. Auth and not-found phrases are checked before the
    generic connection/protocol phrases because an RTSP server rejecting
    credentials can also print connection-level noise on the same line.

Startup Markers:
    A disjoint set of phrases printed once the transcoder has opened its
    input and begun mapping streams. Seeing one means earlier connection
    retries were transient.
"""
from __future__ import annotations

from typing import Final

from .errors import ErrorClass

# ============================================================================
# Signature Tables
# ============================================================================

ERROR_SIGNATURES: Final[tuple[tuple[tuple[str, ...], ErrorClass], ...]] = (
    (("401 Unauthorized",), ErrorClass.AUTH),
    (("404 Not Found",), ErrorClass.NOT_FOUND),
    (("Connection refused", "Connection timed out"), ErrorClass.CONNECTION),
    (("Invalid data found", "Protocol not found"), ErrorClass.PROTOCOL),
    (("No such file or directory",), ErrorClass.FILE_ACCESS),
)
"""Ordered (substrings, class) pairs. Case-sensitive."""

STARTUP_MARKERS: Final[tuple[str, ...]] = (
    "Opening",
    "Stream mapping",
    "Press [q] to stop",
)
"""Phrases showing the pipeline has opened its input."""

ERROR_MESSAGES: Final[dict[ErrorClass, str]] = {
    ErrorClass.CONNECTION: "RTSP server is unreachable. Check the URL and the network connection.",
    ErrorClass.PROTOCOL: "RTSP URL is invalid or the protocol is not supported.",
    ErrorClass.FILE_ACCESS: "Output directory is not accessible.",
    ErrorClass.AUTH: "RTSP authentication failed. Check the username and password.",
    ErrorClass.NOT_FOUND: "RTSP stream does not exist. Check the URL path.",
    ErrorClass.RUNTIME_FAILURE: "The stream stopped unexpectedly while running.",
    ErrorClass.UNKNOWN: "The stream failed to start. Check the RTSP URL and the network connection.",
}
"""User-facing guidance per class."""


# ============================================================================
# Classification
# ============================================================================

def classify(text: str) -> ErrorClass | None:
    """Map diagnostic text to an error class.

    Args:
        text: Any amount of diagnostic output (one line or a whole buffer)

    Returns:
        First matching class, or None when no signature is present

    Examples:
        >>> classify("rtsp://cam: Connection refused")
        <ErrorClass.CONNECTION: 'connection'>
        >>> classify("frame=  120 fps= 25") is None
        True
    """
    if not text:
        return None
    for substrings, error_class in ERROR_SIGNATURES:
        if any(substring in text for substring in substrings):
            return error_class
    return None


def is_startup_marker(text: str) -> bool:
    """Whether text contains a startup-marker phrase."""
    return bool(text) and any(marker in text for marker in STARTUP_MARKERS)


def classify_exit(exit_code: int | None, started: bool) -> ErrorClass | None:
    """Class for a process exit that matched no signature.

    Returns:
        None for a clean exit, RUNTIME_FAILURE after readiness,
        UNKNOWN before it
    """
    if exit_code == 0:
        return None
    return ErrorClass.RUNTIME_FAILURE if started else ErrorClass.UNKNOWN


def describe(error_class: ErrorClass) -> str:
    """User-facing guidance for an error class."""
    return ERROR_MESSAGES.get(error_class, ERROR_MESSAGES[ErrorClass.UNKNOWN])
