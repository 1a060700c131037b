"""Read-only stream status API derived from the output directory.

    GET /api/streams        {"streams": [{"id", "name", "url", "path"}, ...]}
    GET /api/stream/{id}    {"id", "url", "available": true} or 404 {"error"}

Manifests in subdirectories of the output root are included; their URLs keep
the subdirectory. Nothing is cached: every call re-reads the directory, so a
manifest that was just written or deleted is reflected immediately.
"""
from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ..config.settings import RuntimeSettings
from ..services.container import get_segments, get_settings
from ..services.segments import SegmentStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["streams"])


@router.get("/streams")
async def list_streams(
    segments: SegmentStore = Depends(get_segments),
    settings: RuntimeSettings = Depends(get_settings),
) -> Dict[str, Any]:
    streams = [
        {
            "id": manifest.stem,
            "name": manifest.stem,
            "url": f"{settings.hls_url}/{segments.relative_url_path(manifest)}",
            "path": str(manifest),
        }
        for manifest in segments.list_manifests()
    ]
    logger.debug(f"Listed {len(streams)} manifest(s)")
    return {"streams": streams}


@router.get("/stream/{stream_id}")
async def get_stream(
    stream_id: str,
    segments: SegmentStore = Depends(get_segments),
    settings: RuntimeSettings = Depends(get_settings),
) -> Any:
    manifest = segments.find_manifest(stream_id)
    if manifest is None:
        return JSONResponse(status_code=404, content={"error": f"Stream {stream_id} not found"})
    return {
        "id": stream_id,
        "url": f"{settings.hls_url}/{segments.relative_url_path(manifest)}",
        "available": True,
    }
