"""Thread-safe YAML store for saved cameras and app settings.

Layout of <config_dir>/config.yml:

    rtsp2hls-storage:
      streams:   [StreamConfig, ...]
      settings:  AppSettings

Features:
    - RLock around every read-modify-write
    - Atomic writes (temp file in the same directory + rename)
    - Auto-recovery: an unreadable or malformed file is reinitialized
    - In-memory mode for CI/testing (RTSP2HLS_CI_DRY_RUN=true)

Runtime status is never written here; it is always derived from the
supervisor.

Logging Strategy:
    DEBUG - File operations
    INFO  - Init, mode selection
    WARN  - Invalid formats, recovery
    ERROR - YAML parsing, I/O failures
"""
from __future__ import annotations

import copy
import io
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Final, Iterator

import yaml

from .models.settings import AppSettings, EditAppSettings, EditStreamConfig, NewStreamConfig, StreamConfig
from .utils.strings import normalize_stream_name

logger = logging.getLogger(__name__)

STORAGE_KEY: Final[str] = "rtsp2hls-storage"
STREAMS_KEY: Final[str] = "streams"
SETTINGS_KEY: Final[str] = "settings"
CONFIG_FILENAME: Final[str] = "config.yml"


def _empty_storage() -> dict[str, Any]:
    return {STREAMS_KEY: [], SETTINGS_KEY: AppSettings().to_wire()}


def _ensure_unique_name(entries: list[dict[str, Any]], name: str, exclude_id: str | None = None) -> None:
    """Case-insensitive name check across saved cameras."""
    normalized = normalize_stream_name(name)
    for entry in entries:
        if entry.get("id") == exclude_id:
            continue
        if normalize_stream_name(entry.get("name", "")) == normalized:
            raise ValueError(f"Stream name '{name}' already exists")


def _atomic_rename(src: str | Path, dst: str | Path) -> None:
    """Replace dst with src in one step (atomic on POSIX)."""
    os.replace(src, dst)


class ConfigStore:
    """Persisted stream list and settings."""

    def __init__(self, config_dir: Path, dry_run: bool = False) -> None:
        self.config_dir = config_dir
        self.config_path = config_dir / CONFIG_FILENAME
        self.dry_run = dry_run
        self._lock = threading.RLock()
        self._in_memory: dict[str, Any] = _empty_storage()

        if dry_run:
            logger.info("Config: DRY_RUN mode (in-memory)")
        else:
            logger.info(f"Config: {self.config_path}")

    # ========================================================================
    # Raw storage
    # ========================================================================

    def load(self) -> dict[str, Any]:
        """Storage section with recovery; never raises for bad file content."""
        with self._lock:
            if self.dry_run:
                return copy.deepcopy(self._in_memory)

            if not self.config_path.exists():
                self._initialize()
                return _empty_storage()

            try:
                with io.open(self.config_path, "r", encoding="utf-8") as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                logger.error(f"YAML parsing error: {e}", exc_info=True)
                logger.warning("Reinitializing corrupted config")
                self._initialize()
                return _empty_storage()

            storage = data.get(STORAGE_KEY) if isinstance(data, dict) else None
            if not isinstance(storage, dict):
                logger.warning(f"Missing or invalid '{STORAGE_KEY}' section, reinitializing")
                self._initialize()
                return _empty_storage()

            if not isinstance(storage.get(STREAMS_KEY), list):
                storage[STREAMS_KEY] = []
            if not isinstance(storage.get(SETTINGS_KEY), dict):
                storage[SETTINGS_KEY] = AppSettings().to_wire()
            logger.debug(f"Loaded {len(storage[STREAMS_KEY])} stream config(s)")
            return storage

    def save(self, storage: dict[str, Any]) -> None:
        """Write the storage section atomically.

        Raises:
            ValueError: Invalid structure
            OSError: Write failure
        """
        if not isinstance(storage, dict) or not isinstance(storage.get(STREAMS_KEY, []), list):
            raise ValueError("Storage must be a dict with a streams list")

        with self._lock:
            if self.dry_run:
                self._in_memory = copy.deepcopy(storage)
                return

            self.config_dir.mkdir(parents=True, exist_ok=True)
            temp_path = None
            try:
                fd, temp_path = tempfile.mkstemp(dir=self.config_dir, prefix=".config_", suffix=".yml.tmp")
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    yaml.safe_dump(
                        {STORAGE_KEY: storage},
                        f,
                        default_flow_style=False,
                        sort_keys=False,
                        allow_unicode=True,
                    )
                _atomic_rename(temp_path, self.config_path)
                logger.debug(f"Saved {len(storage.get(STREAMS_KEY, []))} stream config(s)")
            except Exception as e:
                logger.error(f"Config save failed: {e}", exc_info=True)
                if temp_path and os.path.exists(temp_path):
                    try:
                        os.remove(temp_path)
                    except OSError as cleanup_err:
                        logger.warning(f"Temp cleanup failed: {cleanup_err}")
                raise

    @contextmanager
    def atomic_update(self) -> Iterator[dict[str, Any]]:
        """Hold the lock across load, caller modification and save."""
        with self._lock:
            storage = self.load()
            yield storage
            self.save(storage)

    def _initialize(self) -> None:
        logger.info(f"Initializing config: {self.config_path}")
        self.save(_empty_storage())

    # ========================================================================
    # Stream configs
    # ========================================================================

    def list_streams(self) -> list[StreamConfig]:
        configs = []
        for entry in self.load()[STREAMS_KEY]:
            try:
                configs.append(StreamConfig.model_validate(entry))
            except ValueError as e:
                logger.warning(f"Skipping invalid stream config {entry.get('id', '?')}: {e}")
        return configs

    def get_stream(self, stream_id: str) -> StreamConfig | None:
        return next((c for c in self.list_streams() if c.id == stream_id), None)

    def add_stream(self, new_stream: NewStreamConfig) -> StreamConfig:
        """Raises ValueError if another camera already uses the name."""
        config = StreamConfig(**new_stream.model_dump())
        with self.atomic_update() as storage:
            _ensure_unique_name(storage[STREAMS_KEY], config.name)
            storage[STREAMS_KEY].append(config.to_wire())
        logger.info(f"Stream config created: {config.id} ({config.name})")
        return config

    def update_stream(self, stream_id: str, changes: EditStreamConfig) -> StreamConfig | None:
        with self.atomic_update() as storage:
            for index, entry in enumerate(storage[STREAMS_KEY]):
                if entry.get("id") != stream_id:
                    continue
                current = StreamConfig.model_validate(entry)
                if changes.name is not None:
                    _ensure_unique_name(storage[STREAMS_KEY], changes.name, exclude_id=stream_id)
                updated = current.model_copy(update={
                    **changes.model_dump(exclude_unset=True, exclude_none=True),
                    "updated_at": datetime.now(timezone.utc).isoformat(),
                })
                updated = StreamConfig.model_validate(updated.model_dump())
                storage[STREAMS_KEY][index] = updated.to_wire()
                return updated
        return None

    def delete_stream(self, stream_id: str) -> bool:
        with self.atomic_update() as storage:
            before = len(storage[STREAMS_KEY])
            storage[STREAMS_KEY] = [s for s in storage[STREAMS_KEY] if s.get("id") != stream_id]
            deleted = len(storage[STREAMS_KEY]) < before
        if deleted:
            logger.info(f"Stream config deleted: {stream_id}")
        return deleted

    # ========================================================================
    # App settings
    # ========================================================================

    def get_settings(self) -> AppSettings:
        raw = self.load()[SETTINGS_KEY]
        try:
            return AppSettings.model_validate(raw)
        except ValueError as e:
            logger.warning(f"Invalid stored settings, using defaults: {e}")
            return AppSettings()

    def update_settings(self, changes: EditAppSettings) -> AppSettings:
        """Apply the fields present in changes to the stored settings."""
        with self.atomic_update() as storage:
            current = self.get_settings_from(storage)
            settings = AppSettings.model_validate({
                **current.model_dump(),
                **changes.model_dump(exclude_unset=True, exclude_none=True),
            })
            storage[SETTINGS_KEY] = settings.to_wire()
        return settings

    def reset_settings(self) -> AppSettings:
        settings = AppSettings()
        with self.atomic_update() as storage:
            storage[SETTINGS_KEY] = settings.to_wire()
        return settings

    @staticmethod
    def get_settings_from(storage: dict[str, Any]) -> AppSettings:
        try:
            return AppSettings.model_validate(storage.get(SETTINGS_KEY) or {})
        except ValueError:
            return AppSettings()
