from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from .logger import get_logger

_logger = get_logger("settings")


def default_settings_path() -> str:
    env = (os.getenv("PICLET_SETTINGS") or "").strip()
    if env:
        return env
    return str(Path.home() / ".config" / "piclet" / "settings.json")


class SettingsManager:
    def __init__(self, settings_path: str | None = None):
        self.settings_path = settings_path or default_settings_path()
        self._settings: dict[str, Any] = {}
        self.load()

    DEFAULTS: dict[str, Any] = {
        "engine_timeout": 60.0,
        "preview_max_size": 512,
        "temp_dir": None,
        "presets_path": None,
        "removebg_fuzz": 10,
        "removebg_trim": True,
        "removebg_preserve_inner": False,
        "removebg_edge_strength": 1.0,
        "icon_platforms": ["web", "android", "ios"],
    }

    def load(self) -> None:
        try:
            if os.path.exists(self.settings_path):
                with open(self.settings_path, encoding="utf-8") as f:
                    data = json.load(f)
                    if isinstance(data, dict):
                        self._settings = data
                        _logger.debug("settings loaded: %s", self.settings_path)
                        return
        except Exception as e:
            _logger.warning("settings load failed: %s", e)
        self._settings = {}

    def save(self) -> None:
        try:
            os.makedirs(os.path.dirname(self.settings_path) or ".", exist_ok=True)
            with open(self.settings_path, "w", encoding="utf-8") as f:
                json.dump(self._settings, f, ensure_ascii=False, indent=2)
            _logger.debug("settings saved: %s", self.settings_path)
        except Exception as e:
            _logger.error("settings save failed: %s", e)

    def get(self, key: str, default: Any = None) -> Any:
        if key in self._settings:
            return self._settings[key]
        if default is not None:
            return default
        return self.DEFAULTS.get(key)

    def has(self, key: str) -> bool:
        return key in self._settings

    def set(self, key: str, value: Any) -> None:
        self._settings[key] = value
        self.save()

    @property
    def data(self) -> dict[str, Any]:
        return self._settings

    @property
    def engine_timeout(self) -> float | None:
        try:
            val = float(self.get("engine_timeout"))
        except (TypeError, ValueError):
            _logger.warning("invalid engine_timeout: %r", self.get("engine_timeout"))
            return float(self.DEFAULTS["engine_timeout"])
        return val if val > 0 else None

    @property
    def preview_max_size(self) -> int:
        try:
            return max(16, int(self.get("preview_max_size")))
        except (TypeError, ValueError):
            return int(self.DEFAULTS["preview_max_size"])

    @property
    def temp_dir(self) -> str | None:
        val = self.get("temp_dir")
        return val if isinstance(val, str) and os.path.isdir(val) else None

    @property
    def presets_path(self) -> str:
        val = self.get("presets_path")
        return str(val) if val else str(Path.home() / ".piclet" / "presets.json")
