"""Request ID middleware for request correlation.

Assigns each request an ID (client-provided X-Request-ID, else UUID4), logs
request and response with timing, records HTTP metrics, and echoes the ID in
the response header.

Logging Strategy:
    DEBUG - Request start, segment and manifest responses (players poll these
            every second, so they stay out of INFO)
    INFO  - Other successful responses with duration
    WARN  - Client errors (4xx)
    ERROR - Server errors (5xx), unhandled exceptions with stack trace
"""
from __future__ import annotations

import logging
import time
import uuid
from typing import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .. import metrics

logger = logging.getLogger(__name__)

QUIET_SUFFIXES = (".m3u8", ".ts", ".m4s", ".mp4")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Adds X-Request-ID and request/response logging."""

    def __init__(self, app: ASGIApp, header_name: str = "X-Request-ID") -> None:
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request_id = request.headers.get(self.header_name) or str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.perf_counter()
        logger.debug(f"→ {request.method} {request.url.path}", extra={"request_id": request_id})

        try:
            response = await call_next(request)
        except Exception as e:
            duration = time.perf_counter() - start_time
            logger.error(
                f"Request {request_id} failed after {duration*1000:.2f}ms: {type(e).__name__}: {e}",
                exc_info=True,
                extra={"request_id": request_id}
            )
            raise

        response.headers[self.header_name] = request_id
        duration = time.perf_counter() - start_time
        metrics.track_http_request(request.method, response.status_code, duration)
        self._log_response(request, response, request_id, duration)
        return response

    def _log_response(self, request: Request, response: Response, request_id: str, duration: float) -> None:
        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        elif request.url.path.endswith(QUIET_SUFFIXES):
            log_level = logging.DEBUG
        else:
            log_level = logging.INFO

        duration_ms = duration * 1000
        logger.log(
            log_level,
            f"← {request.method} {request.url.path} {status} ({duration_ms:.2f}ms)",
            extra={
                "request_id": request_id,
                "status_code": status,
                "duration_ms": round(duration_ms, 2)
            }
        )
