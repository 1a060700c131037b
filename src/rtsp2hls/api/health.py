"""Health and metrics endpoints.

    GET /api/health   {"status": "ok", "port": 8080}   (UI/player contract)
    GET /health       detailed supervisor status
    GET /health/live  {"status": "alive"}
    GET /metrics      Prometheus exposition

Health Status Levels (GET /health):
    - healthy: no stream carries an error
    - degraded: at least one stream is in the error phase
    - shutting_down: shutdown has begun
"""
from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Response

from .. import metrics
from ..config.settings import RuntimeSettings
from ..models.stream import StreamPhase
from ..services.container import ServiceContainer, get_container, get_settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/api/health")
async def api_health(settings: RuntimeSettings = Depends(get_settings)) -> Dict[str, Any]:
    return {"status": "ok", "port": settings.port}


@router.get("/health")
async def health_check(container: ServiceContainer = Depends(get_container)) -> Dict[str, Any]:
    """Supervisor-level health summary.

    Example Response (Degraded):
        {
            "status": "degraded",
            "streams": [{"identifier": "cam2", "phase": "error", "errorClass": "connection", ...}],
            "metrics": {"total": 2, "running": 1, "starting": 0, "errors": 1}
        }
    """
    records = container.supervisor.status_all()
    counts = {phase: sum(1 for r in records if r.phase is phase) for phase in StreamPhase}

    if container.lifecycle.is_shutting_down:
        overall = "shutting_down"
    elif counts[StreamPhase.ERROR]:
        overall = "degraded"
        logger.warning(f"Health check: degraded - {counts[StreamPhase.ERROR]} stream(s) in error")
    else:
        overall = "healthy"

    return {
        "status": overall,
        "streams": [r.to_wire() for r in records],
        "metrics": {
            "total": len(records),
            "running": counts[StreamPhase.RUNNING],
            "starting": counts[StreamPhase.STARTING],
            "errors": counts[StreamPhase.ERROR],
        },
    }


@router.get("/health/live")
async def liveness_check() -> Dict[str, str]:
    return {"status": "alive"}


@router.get("/metrics", include_in_schema=False)
async def prometheus_metrics() -> Response:
    body, status_code, headers = metrics.get_metrics()
    return Response(content=body, status_code=status_code, headers=headers)
