"""UI-facing control interface.

Thin façade over StreamSupervisor and ToolLocator. Typed failures never cross
this boundary: every StartError becomes StartStreamResult(success=False) with
the failure kind in error_type, so the UI always gets something renderable.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from ..models.control import (
    ProcessStatus,
    StartStreamBody,
    StartStreamResult,
    SuccessResult,
    ToolCheckResult,
)
from ..models.stream import StreamErrorRecord, StreamRequest
from .errors import FailureKind, StartError
from .supervisor import StreamSupervisor, ToolChecker

logger = logging.getLogger(__name__)


class ControlInterface:
    def __init__(
        self,
        supervisor: StreamSupervisor,
        tool_checker: ToolChecker,
        stream_limit: Callable[[], int] | None = None,
    ) -> None:
        self.supervisor = supervisor
        self.tool_checker = tool_checker
        self.stream_limit = stream_limit

    async def start_stream(self, stream_id: str, body: StartStreamBody) -> StartStreamResult:
        try:
            request = StreamRequest(
                identifier=stream_id,
                source_url=body.source_url,
                output_directory=Path(body.output_directory) if body.output_directory else None,
                options=body.options,
            )
        except ValidationError as e:
            first = e.errors()[0]
            return StartStreamResult(success=False, error=str(first.get("msg", e)), error_type="validation")

        limit = self.stream_limit() if self.stream_limit else None
        running = self.supervisor.running_identifiers
        if limit is not None and stream_id not in running and len(running) >= limit:
            logger.warning(f"[{stream_id}] Start refused: {limit} stream(s) already running")
            return StartStreamResult(
                success=False,
                error=f"Maximum concurrent streams ({limit}) reached",
                error_type="limit",
            )

        try:
            ready = await self.supervisor.start(request)
        except StartError as e:
            return StartStreamResult(success=False, error=e.message, error_type=e.kind.value)
        return StartStreamResult(success=True, output_path=ready.manifest_path, playback_url=ready.playback_url)

    def stop_stream(self, stream_id: str) -> SuccessResult:
        return SuccessResult(success=self.supervisor.stop(stream_id))

    def get_status(self, stream_id: str) -> ProcessStatus:
        return ProcessStatus(
            running=self.supervisor.is_running(stream_id),
            pid=self.supervisor.pid(stream_id),
        )

    def get_all_status(self) -> dict[str, ProcessStatus]:
        return {stream_id: self.get_status(stream_id) for stream_id in self.supervisor.running_identifiers}

    def get_error(self, stream_id: str) -> StreamErrorRecord | None:
        return self.supervisor.get_error(stream_id)

    def clear_error(self, stream_id: str) -> SuccessResult:
        self.supervisor.clear_error(stream_id)
        return SuccessResult(success=True)

    async def check_external_tool_available(self) -> ToolCheckResult:
        result = await self.tool_checker()
        if not result.available:
            logger.warning(f"{FailureKind.EXTERNAL_TOOL_UNAVAILABLE.value}: {result.error}")
        return result
