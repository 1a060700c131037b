"""Control API used by the UI.

    POST   /api/control/streams/{id}/start    start and wait for readiness
    POST   /api/control/streams/{id}/stop
    GET    /api/control/streams/{id}/status   {running, pid}
    GET    /api/control/streams/status        {id: {running, pid}}
    GET    /api/control/streams/{id}/record   full StreamStatusRecord
    GET    /api/control/streams/{id}/error    last error or null
    DELETE /api/control/streams/{id}/error
    GET    /api/control/tool                  ffmpeg availability
    GET    /api/control/events                server-sent StreamEvents
    POST   /api/control/stop-all              stop everything, keep serving (503 once shutting down)
    POST   /api/control/shutdown              full cleanup, then exit
    GET    /api/control/server-info

Start failures are ordinary 200 responses with success=false; the UI renders
error_type. Only malformed requests produce error status codes.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, Final

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import StreamingResponse

from ..config.settings import RuntimeSettings
from ..models.control import (
    ProcessStatus,
    ServerInfo,
    StartStreamBody,
    StartStreamResult,
    SuccessResult,
    ToolCheckResult,
)
from ..models.stream import StreamErrorRecord, StreamEvent, StreamStatusRecord
from ..services.container import (
    get_control,
    get_lifecycle,
    get_settings,
    get_supervisor,
)
from ..services.control import ControlInterface
from ..services.lifecycle import LifecycleHooks
from ..services.supervisor import StreamSupervisor
from .errors import raise_service_unavailable

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/control", tags=["control"])

EVENT_HEARTBEAT_SECONDS: Final[float] = 15.0
EVENT_QUEUE_SIZE: Final[int] = 256


# ============================================================================
# Streams
# ============================================================================

@router.post("/streams/{stream_id}/start", response_model=StartStreamResult, response_model_exclude_none=True)
async def start_stream(
    stream_id: str,
    body: StartStreamBody,
    control: ControlInterface = Depends(get_control),
) -> StartStreamResult:
    return await control.start_stream(stream_id, body)


@router.post("/streams/{stream_id}/stop", response_model=SuccessResult)
async def stop_stream(stream_id: str, control: ControlInterface = Depends(get_control)) -> SuccessResult:
    return control.stop_stream(stream_id)


@router.get("/streams/status")
async def get_all_status(control: ControlInterface = Depends(get_control)) -> Dict[str, Any]:
    return {stream_id: status.to_wire() for stream_id, status in control.get_all_status().items()}


@router.get("/streams/{stream_id}/status", response_model=ProcessStatus)
async def get_status(stream_id: str, control: ControlInterface = Depends(get_control)) -> ProcessStatus:
    return control.get_status(stream_id)


@router.get("/streams/{stream_id}/record", response_model=StreamStatusRecord)
async def get_record(stream_id: str, supervisor: StreamSupervisor = Depends(get_supervisor)) -> StreamStatusRecord:
    return supervisor.status(stream_id)


@router.get("/streams/{stream_id}/error", response_model=StreamErrorRecord | None)
async def get_error(stream_id: str, control: ControlInterface = Depends(get_control)) -> StreamErrorRecord | None:
    return control.get_error(stream_id)


@router.delete("/streams/{stream_id}/error", response_model=SuccessResult)
async def clear_error(stream_id: str, control: ControlInterface = Depends(get_control)) -> SuccessResult:
    return control.clear_error(stream_id)


# ============================================================================
# Tool & Server
# ============================================================================

@router.get("/tool", response_model=ToolCheckResult, response_model_exclude_none=True)
async def check_tool(control: ControlInterface = Depends(get_control)) -> ToolCheckResult:
    return await control.check_external_tool_available()


@router.get("/server-info", response_model=ServerInfo)
async def server_info(
    settings: RuntimeSettings = Depends(get_settings),
    lifecycle: LifecycleHooks = Depends(get_lifecycle),
) -> ServerInfo:
    return ServerInfo(
        port=settings.port,
        base_url=settings.base_url,
        hls_url=settings.hls_url,
        api_url=settings.api_url,
        running=not lifecycle.is_shutting_down,
    )


@router.post("/stop-all")
async def stop_all(lifecycle: LifecycleHooks = Depends(get_lifecycle)) -> Dict[str, Any]:
    if lifecycle.is_shutting_down:
        raise_service_unavailable("Server is shutting down")
    stopped = await lifecycle.stop_all_streams()
    return {"success": True, "stopped": stopped}


@router.post("/shutdown", status_code=202)
async def shutdown(
    background_tasks: BackgroundTasks,
    lifecycle: LifecycleHooks = Depends(get_lifecycle),
) -> Dict[str, Any]:
    """Acknowledge first, then clean up; the response must not wait on exit."""
    background_tasks.add_task(lifecycle.shutdown, "ui-close")
    return {"success": True, "shuttingDown": True}


# ============================================================================
# Events
# ============================================================================

def _format_event(event: StreamEvent) -> str:
    return f"event: status\ndata: {event.model_dump_json(by_alias=True)}\n\n"


@router.get("/events")
async def stream_events(
    request: Request,
    supervisor: StreamSupervisor = Depends(get_supervisor),
    lifecycle: LifecycleHooks = Depends(get_lifecycle),
) -> StreamingResponse:
    """Server-sent events: one `status` event per stream transition."""
    queue: asyncio.Queue[StreamEvent] = asyncio.Queue(maxsize=EVENT_QUEUE_SIZE)

    def enqueue(event: StreamEvent) -> None:
        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(f"[{event.identifier}] Event subscriber is not keeping up, dropping event")

    unsubscribe = supervisor.subscribe(enqueue)

    async def event_stream() -> AsyncIterator[str]:
        try:
            yield ": connected\n\n"
            while not lifecycle.is_complete:
                if await request.is_disconnected():
                    break
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=EVENT_HEARTBEAT_SECONDS)
                except asyncio.TimeoutError:
                    yield ": heartbeat\n\n"
                    continue
                yield _format_event(event)
        finally:
            unsubscribe()
            logger.debug("Event subscriber disconnected")

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
