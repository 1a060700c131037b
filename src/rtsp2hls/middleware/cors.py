"""Permissive CORS for the local UI and HLS players.

Every response carries the allow-all headers, and any OPTIONS request is
answered with 204 before routing, whether or not it is a formal preflight.
"""
from __future__ import annotations

from typing import Awaitable, Callable, Final

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

CORS_HEADERS: Final[dict[str, str]] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS, PUT, PATCH, DELETE",
    "Access-Control-Allow-Headers": "X-Requested-With, Content-Type, Authorization, X-Request-ID",
    "Access-Control-Expose-Headers": "X-Request-ID",
}


class CORSMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=CORS_HEADERS)

        response = await call_next(request)
        for name, value in CORS_HEADERS.items():
            response.headers.setdefault(name, value)
        return response
