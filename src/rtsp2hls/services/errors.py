"""Typed failures raised by the supervisor and the segment server.

Error Taxonomy:
    ErrorClass   - what the transcoder's diagnostics say went wrong
    FailureKind  - every way a start request can end without a live stream
                   (superset of ErrorClass plus supervisor-level failures)

Start failures are raised as StartError inside the service layer and turned
into plain result dictionaries by the control interface, so the UI always
receives a specific, renderable failure kind.
"""
from __future__ import annotations

from enum import Enum


class ErrorClass(str, Enum):
    """Closed set of failure classes derived from transcoder diagnostics."""

    CONNECTION = "connection"
    PROTOCOL = "protocol"
    FILE_ACCESS = "file"
    AUTH = "auth"
    NOT_FOUND = "notfound"
    RUNTIME_FAILURE = "runtime"
    UNKNOWN = "unknown"


class FailureKind(str, Enum):
    """Reasons a start request can fail."""

    SPAWN_FAILURE = "spawn"
    READINESS_TIMEOUT = "timeout"
    STOPPED_DURING_STARTUP = "stopped"
    ALREADY_RUNNING = "already_running"
    EXTERNAL_TOOL_UNAVAILABLE = "tool_unavailable"
    DIRECTORY_TRAVERSAL_REJECTED = "traversal"

    CONNECTION = ErrorClass.CONNECTION.value
    PROTOCOL = ErrorClass.PROTOCOL.value
    FILE_ACCESS = ErrorClass.FILE_ACCESS.value
    AUTH = ErrorClass.AUTH.value
    NOT_FOUND = ErrorClass.NOT_FOUND.value
    RUNTIME_FAILURE = ErrorClass.RUNTIME_FAILURE.value
    UNKNOWN = ErrorClass.UNKNOWN.value

    @classmethod
    def from_error_class(cls, error_class: ErrorClass) -> FailureKind:
        return cls(error_class.value)


class StartError(Exception):
    """A start request ended without a live stream.

    Attributes:
        kind: Specific failure reason
        message: Human-readable guidance for the UI
        identifier: Stream the request was for
        error_class: Diagnostic class when the failure came from the transcoder
    """

    def __init__(
        self,
        kind: FailureKind,
        message: str,
        identifier: str | None = None,
        error_class: ErrorClass | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.identifier = identifier
        self.error_class = error_class

    def __repr__(self) -> str:
        return f"StartError(kind={self.kind.value!r}, identifier={self.identifier!r}, message={self.message!r})"


class PathTraversalError(Exception):
    """Requested path resolves outside the served root."""

    kind = FailureKind.DIRECTORY_TRAVERSAL_REJECTED
