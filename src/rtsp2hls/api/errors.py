"""Standard error bodies and exception handlers for the JSON API.

Error Response Format:
    {
        "code": "NOT_FOUND",
        "message": "Human-readable description",
        "details": {"additional": "context"}
    }

The segment routes (/hls/..., /<path>) answer with short plain-text bodies
instead, since their clients are video players rather than the UI.

Logging Strategy:
    DEBUG - Error creation
    INFO  - Client errors (4xx)
    WARN  - Request validation failures
    ERROR - Server errors (5xx), unexpected exceptions with stack trace
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Optional

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class ErrorResponse(BaseModel):
    """Body of every JSON API error."""

    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[dict[str, Any]] = Field(None, description="Additional error details")


class ErrorCode(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    DUPLICATE_NAME = "DUPLICATE_NAME"
    SHUTTING_DOWN = "SHUTTING_DOWN"
    INTERNAL_ERROR = "INTERNAL_ERROR"


def create_error_response(
    code: ErrorCode | str,
    message: str,
    details: Optional[dict[str, Any]] = None
) -> ErrorResponse:
    code_str = code.value if isinstance(code, ErrorCode) else code
    logger.debug(f"Creating error response: code={code_str}, message={message}")
    return ErrorResponse(code=code_str, message=message, details=details)


def raise_not_found(resource: str, resource_id: str) -> None:
    """Raise a 404 with the standard body.

    Example:
        >>> raise_not_found("stream config", "stream_1a2b3c")
    """
    error = create_error_response(
        code=ErrorCode.NOT_FOUND,
        message=f"{resource.capitalize()} not found",
        details={"resource": resource, "id": resource_id}
    )
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error.model_dump())


def raise_conflict(code: ErrorCode, message: str, details: Optional[dict[str, Any]] = None) -> None:
    """Raise a 409 for a request that clashes with stored or running state."""
    logger.debug(f"Conflict: {message}, details={details}")
    error = create_error_response(code=code, message=message, details=details)
    raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=error.model_dump())


def raise_service_unavailable(message: str, details: Optional[dict[str, Any]] = None) -> None:
    logger.warning(f"Service unavailable: {message}")
    error = create_error_response(code=ErrorCode.SHUTTING_DOWN, message=message, details=details)
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=error.model_dump())


# ============================================================================
# Global Exception Handlers
# ============================================================================

async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """422 with the pydantic error list under details.errors."""
    logger.warning(
        f"Validation failed: {request.method} {request.url.path} "
        f"({len(exc.errors())} error(s))"
    )
    logger.debug(f"Validation errors: {exc.errors()}")

    error = create_error_response(
        code=ErrorCode.VALIDATION_ERROR,
        message="Request validation failed",
        details={"errors": [
            {"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")}
            for e in exc.errors()
        ]}
    )
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=error.model_dump())


async def http_exception_handler(
    request: Request,
    exc: HTTPException
) -> JSONResponse:
    """Pass standard bodies through; wrap anything else."""
    if exc.status_code >= 500:
        logger.error(f"Server error: {request.method} {request.url.path} -> {exc.status_code}: {exc.detail}")
    else:
        logger.info(f"Client error: {request.method} {request.url.path} -> {exc.status_code}: {exc.detail}")

    if isinstance(exc.detail, dict) and "code" in exc.detail:
        return JSONResponse(status_code=exc.status_code, content=exc.detail, headers=exc.headers)

    code = ErrorCode.NOT_FOUND if exc.status_code == status.HTTP_404_NOT_FOUND else ErrorCode.INTERNAL_ERROR
    error = create_error_response(code=code, message=str(exc.detail) if exc.detail else "An error occurred")
    return JSONResponse(status_code=exc.status_code, content=error.model_dump(), headers=exc.headers)


async def general_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """500 with a generic message; the exception itself only goes to the log."""
    logger.error(
        f"Unhandled exception: {request.method} {request.url.path} "
        f"-> {type(exc).__name__}: {exc}",
        exc_info=exc
    )
    error = create_error_response(code=ErrorCode.INTERNAL_ERROR, message="An internal server error occurred")
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=error.model_dump())
