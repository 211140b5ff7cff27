from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from threading import RLock
from typing import Optional

from ..domain.models import AISettings
from ..services.model_router import default_model

logger = logging.getLogger(__name__)


def default_settings() -> AISettings:
    return AISettings(provider="gemini", api_key="", model=default_model("gemini"))


class SettingsStore:
    """Holds the user's provider settings, optionally persisted to a JSON file."""

    def __init__(self, file_path: Optional[str] = None) -> None:
        self._lock = RLock()
        self._path = Path(file_path) if file_path else None
        self._settings = default_settings()
        self._load()

    def _load(self) -> None:
        if self._path is None or not self._path.exists():
            return
        try:
            self._settings = AISettings.model_validate_json(self._path.read_text(encoding="utf-8"))
        except (ValueError, OSError) as exc:
            logger.warning("Failed to parse settings %s, using defaults: %s", self._path, exc)
            self._settings = default_settings()

    def get(self) -> AISettings:
        with self._lock:
            return self._settings.model_copy()

    def save(self, settings: AISettings) -> AISettings:
        with self._lock:
            if not settings.model:
                settings = settings.model_copy(update={"model": default_model(settings.provider)})
            self._settings = settings
            if self._path is not None:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                self._path.write_text(json.dumps(settings.model_dump(), indent=2), encoding="utf-8")
            return self._settings.model_copy()


_settings_store: SettingsStore | None = None


def get_settings_store() -> SettingsStore:
    global _settings_store
    if _settings_store is None:
        impl = os.getenv("NEONVIBE_SESSION_STORE_IMPL", "memory").lower()
        path = None
        if impl == "file":
            path = os.getenv("NEONVIBE_SETTINGS_FILE", str(Path.cwd() / "run" / "settings.json"))
        _settings_store = SettingsStore(path)
    return _settings_store
