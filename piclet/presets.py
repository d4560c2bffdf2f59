"""Store-pack presets: built-ins plus user presets from a JSON file.

User file layout::

    {"version": 1, "presets": [{"id": ..., "name": ..., "description": ..., "icons": [...]}]}

User presets are merged over built-ins by id. Built-ins cannot be deleted.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import PresetError
from .logger import get_logger
from .path_utils import safe_file_name
from .pipeline.stages import ScaleMode, StoreDimension, StorePackParams

_logger = get_logger("presets")

PRESETS_VERSION = 1


@dataclass(frozen=True)
class IconSpec:
    filename: str
    width: int
    height: int

    def to_dict(self) -> dict[str, Any]:
        return {"filename": self.filename, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class Preset:
    id: str
    name: str
    description: str = ""
    icons: tuple[IconSpec, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "icons": [i.to_dict() for i in self.icons],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Preset:
        try:
            pid = str(data["id"]).strip()
            icons = tuple(_icon_spec(i) for i in data.get("icons") or [])
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise PresetError(f"invalid preset: {e}") from e
        if not pid:
            raise PresetError("invalid preset: empty id")
        return cls(
            id=pid,
            name=str(data.get("name") or pid),
            description=str(data.get("description") or ""),
            icons=icons,
        )

    def to_store_pack(self, scale_mode: ScaleMode = ScaleMode.FIT) -> StorePackParams:
        dims = tuple(StoreDimension(i.width, i.height, i.filename) for i in self.icons)
        return StorePackParams(dimensions=dims, scale_mode=scale_mode, pack_name=self.id)


def _icon_spec(data: dict[str, Any]) -> IconSpec:
    width, height = int(data["width"]), int(data["height"])
    # user presets may carry path components; outputs stay inside the pack folder
    name = safe_file_name(data.get("filename")) or f"{width}x{height}.png"
    return IconSpec(name, width, height)


def _preset(pid: str, name: str, description: str, *icons: tuple[str, int, int]) -> Preset:
    return Preset(pid, name, description, tuple(IconSpec(f, w, h) for f, w, h in icons))


BUILT_IN_PRESETS: tuple[Preset, ...] = (
    # Game asset stores
    _preset(
        "unity-asset",
        "Unity Asset Store",
        "Unity Asset Store package images",
        ("icon-160.png", 160, 160),
        ("card-420x280.png", 420, 280),
        ("cover-1200x630.png", 1200, 630),
        ("screenshot-1920x1080.png", 1920, 1080),
    ),
    _preset(
        "unreal-fab",
        "Unreal / Fab",
        "Unreal Marketplace & Fab assets",
        ("icon-256.png", 256, 256),
        ("thumbnail-284.png", 284, 284),
        ("featured-894x488.png", 894, 488),
        ("gallery-1920x1080.png", 1920, 1080),
    ),
    _preset(
        "godot-asset",
        "Godot Asset Library",
        "Godot Asset Library images",
        ("icon-64.png", 64, 64),
        ("icon-128.png", 128, 128),
        ("screenshot-1280x720.png", 1280, 720),
        ("screenshot-1920x1080.png", 1920, 1080),
    ),
    _preset(
        "blender-market",
        "Blender Market",
        "Blender Market product images",
        ("icon-128.png", 128, 128),
        ("thumbnail-256.png", 256, 256),
        ("preview-1920x1080.png", 1920, 1080),
    ),
    _preset(
        "steam",
        "Steam",
        "Steam store assets",
        ("capsule-small-231x87.png", 231, 87),
        ("capsule-main-616x353.png", 616, 353),
        ("header-460x215.png", 460, 215),
        ("hero-1920x620.png", 1920, 620),
        ("library-capsule-600x900.png", 600, 900),
        ("library-hero-3840x1240.png", 3840, 1240),
    ),
    _preset(
        "itch-io",
        "itch.io",
        "itch.io game page assets",
        ("cover-630x500.png", 630, 500),
        ("thumbnail-315x250.png", 315, 250),
        ("banner-960x540.png", 960, 540),
    ),
    # Extensions and packages
    _preset(
        "chrome-extension",
        "Chrome Extension",
        "Chrome Web Store extension icons",
        ("icon-16.png", 16, 16),
        ("icon-32.png", 32, 32),
        ("icon-48.png", 48, 48),
        ("icon-128.png", 128, 128),
        ("promo-440x280.png", 440, 280),
        ("promo-1400x560.png", 1400, 560),
    ),
    _preset(
        "firefox-addon",
        "Firefox Add-on",
        "Firefox Add-ons icons",
        ("icon-48.png", 48, 48),
        ("icon-96.png", 96, 96),
        ("icon-128.png", 128, 128),
    ),
    _preset(
        "vscode-extension",
        "VS Code Extension",
        "VS Code Marketplace icons",
        ("icon-128.png", 128, 128),
        ("icon-256.png", 256, 256),
    ),
    _preset(
        "npm-package",
        "npm Package",
        "npm package icons",
        ("logo-64.png", 64, 64),
        ("logo-128.png", 128, 128),
        ("logo-256.png", 256, 256),
        ("banner-1200x600.png", 1200, 600),
    ),
    _preset(
        "windows-store",
        "Windows Store",
        "Microsoft Store app icons",
        ("Square44x44Logo.png", 44, 44),
        ("Square150x150Logo.png", 150, 150),
        ("Square310x310Logo.png", 310, 310),
        ("Wide310x150Logo.png", 310, 150),
        ("StoreLogo-50.png", 50, 50),
        ("SplashScreen-620x300.png", 620, 300),
    ),
)


def default_presets_path() -> str:
    return str(Path.home() / ".piclet" / "presets.json")


def builtin_preset_ids() -> list[str]:
    return [p.id for p in BUILT_IN_PRESETS]


def _read_user_presets(path: str) -> list[Preset]:
    if not os.path.exists(path):
        return []
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        _logger.warning("presets load failed: %s", e)
        return []
    presets: list[Preset] = []
    for raw in (data.get("presets") if isinstance(data, dict) else None) or []:
        try:
            presets.append(Preset.from_dict(raw))
        except PresetError as e:
            _logger.warning("skipping preset in %s: %s", path, e)
    return presets


def _write_user_presets(path: str, presets: list[Preset]) -> None:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump({"version": PRESETS_VERSION, "presets": [p.to_dict() for p in presets]}, f, indent=2)
    _logger.debug("presets saved: %s (%d user presets)", path, len(presets))


def load_presets(path: str | None = None) -> list[Preset]:
    """Built-ins first, then user presets (a user preset replaces a built-in with the same id)."""
    merged: dict[str, Preset] = {p.id: p for p in BUILT_IN_PRESETS}
    for p in _read_user_presets(path or default_presets_path()):
        merged[p.id] = p
    return list(merged.values())


def get_preset(preset_id: str, path: str | None = None) -> Preset | None:
    return next((p for p in load_presets(path) if p.id == preset_id), None)


def save_preset(preset: Preset, path: str | None = None) -> None:
    path = path or default_presets_path()
    user = _read_user_presets(path)
    for i, p in enumerate(user):
        if p.id == preset.id:
            user[i] = preset
            break
    else:
        user.append(preset)
    _write_user_presets(path, user)


def delete_preset(preset_id: str, path: str | None = None) -> None:
    if preset_id in builtin_preset_ids():
        raise PresetError("Cannot delete built-in presets")
    path = path or default_presets_path()
    user = _read_user_presets(path)
    remaining = [p for p in user if p.id != preset_id]
    if len(remaining) == len(user):
        raise PresetError(f"Preset not found: {preset_id}")
    _write_user_presets(path, remaining)
