"""Saved cameras and app settings.

    GET    /api/settings            AppSettings
    PUT    /api/settings            partial update, returns merged settings
    DELETE /api/settings            reset to defaults
    GET    /api/configs             [StreamConfig, ...]
    POST   /api/configs             create, returns the saved config (201, 409 on a duplicate name)
    GET    /api/configs/{id}
    PUT    /api/configs/{id}        partial update
    DELETE /api/configs/{id}        204; a running stream for id is stopped first
"""
from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, Response, status

from ..config_io import ConfigStore
from ..models.settings import AppSettings, EditAppSettings, EditStreamConfig, NewStreamConfig, StreamConfig
from ..services.container import get_config_store, get_supervisor
from ..services.supervisor import StreamSupervisor
from .errors import ErrorCode, raise_conflict, raise_not_found

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["configs"])


@router.get("/settings", response_model=AppSettings)
async def get_app_settings(store: ConfigStore = Depends(get_config_store)) -> AppSettings:
    return store.get_settings()


@router.put("/settings", response_model=AppSettings)
async def update_app_settings(
    changes: EditAppSettings,
    store: ConfigStore = Depends(get_config_store),
) -> AppSettings:
    return store.update_settings(changes)


@router.delete("/settings", response_model=AppSettings)
async def reset_app_settings(store: ConfigStore = Depends(get_config_store)) -> AppSettings:
    return store.reset_settings()


@router.get("/configs", response_model=List[StreamConfig])
async def list_configs(store: ConfigStore = Depends(get_config_store)) -> List[StreamConfig]:
    return store.list_streams()


@router.post("/configs", response_model=StreamConfig, status_code=status.HTTP_201_CREATED)
async def create_config(
    new_stream: NewStreamConfig,
    store: ConfigStore = Depends(get_config_store),
) -> StreamConfig:
    try:
        return store.add_stream(new_stream)
    except ValueError as e:
        raise_conflict(ErrorCode.DUPLICATE_NAME, str(e), {"name": new_stream.name})


@router.get("/configs/{stream_id}", response_model=StreamConfig)
async def get_config(stream_id: str, store: ConfigStore = Depends(get_config_store)) -> StreamConfig:
    config = store.get_stream(stream_id)
    if config is None:
        raise_not_found("stream config", stream_id)
    return config


@router.put("/configs/{stream_id}", response_model=StreamConfig)
async def update_config(
    stream_id: str,
    changes: EditStreamConfig,
    store: ConfigStore = Depends(get_config_store),
) -> StreamConfig:
    try:
        updated = store.update_stream(stream_id, changes)
    except ValueError as e:
        raise_conflict(ErrorCode.DUPLICATE_NAME, str(e), {"name": changes.name})
    if updated is None:
        raise_not_found("stream config", stream_id)
    return updated


@router.delete("/configs/{stream_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_config(
    stream_id: str,
    store: ConfigStore = Depends(get_config_store),
    supervisor: StreamSupervisor = Depends(get_supervisor),
) -> Response:
    if supervisor.stop(stream_id):
        logger.info(f"[{stream_id}] Stopped running stream before deleting its config")
    if not store.delete_stream(stream_id):
        raise_not_found("stream config", stream_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
