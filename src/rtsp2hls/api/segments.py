"""Manifest and segment file serving.

    GET /hls/<path>   file under the output root
    GET /<path>       same, without the prefix

Registered after every other router so the catch-all never shadows an API
route. Responses carry Cache-Control: no-cache; live playlists change every
segment.

Status codes:
    403  path resolves outside the output root
    404  missing file, directory, or unreadable file
    500  any other read failure (generic body, details only in the log)
"""
from __future__ import annotations

import logging
from typing import Final

from fastapi import APIRouter, Depends, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import PlainTextResponse

from .. import metrics
from ..services.container import get_segments
from ..services.errors import PathTraversalError
from ..services.segments import SegmentStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["segments"])

NO_CACHE: Final[dict[str, str]] = {"Cache-Control": "no-cache"}


async def serve_file(file_path: str, segments: SegmentStore) -> Response:
    try:
        content, content_type = await run_in_threadpool(segments.read, file_path)
    except PathTraversalError:
        metrics.traversal_rejections_total.inc()
        metrics.segment_requests_total.labels(status="403").inc()
        return PlainTextResponse("Forbidden", status_code=403, headers=NO_CACHE)
    except (FileNotFoundError, NotADirectoryError, IsADirectoryError, ValueError):
        metrics.segment_requests_total.labels(status="404").inc()
        return PlainTextResponse("File Not Found", status_code=404, headers=NO_CACHE)
    except OSError as e:
        logger.error(f"Failed to read {file_path!r}: {e}", exc_info=True)
        metrics.segment_requests_total.labels(status="500").inc()
        return PlainTextResponse("Internal Server Error", status_code=500, headers=NO_CACHE)

    metrics.segment_requests_total.labels(status="200").inc()
    return Response(content=content, media_type=content_type, headers=NO_CACHE)


@router.get("/hls/{file_path:path}", include_in_schema=False)
async def serve_hls(file_path: str, segments: SegmentStore = Depends(get_segments)) -> Response:
    return await serve_file(file_path, segments)


@router.get("/{file_path:path}", include_in_schema=False)
async def serve_root(file_path: str, segments: SegmentStore = Depends(get_segments)) -> Response:
    return await serve_file(file_path, segments)
