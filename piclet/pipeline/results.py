"""Result objects returned across the public boundary.

``to_dict()`` renders the camelCase shape the front-end consumes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from piclet.logger import get_logger

_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass
class LogEntry:
    level: str
    message: str
    stage: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"type": self.level, "message": self.message}
        if self.stage:
            d["stage"] = self.stage
        return d


class ProcessLog:
    """User-visible stage log, mirrored into the module logger."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.entries: list[LogEntry] = []
        self._logger = logger or get_logger("pipeline")

    def add(self, level: str, message: str, stage: str | None = None) -> None:
        self.entries.append(LogEntry(level, message, stage))
        prefix = f"[{stage}] " if stage else ""
        self._logger.log(_LEVELS.get(level, logging.INFO), "%s%s", prefix, message)

    def info(self, message: str, stage: str | None = None) -> None:
        self.add("info", message, stage)

    def success(self, message: str, stage: str | None = None) -> None:
        self.add("success", message, stage)

    def warn(self, message: str, stage: str | None = None) -> None:
        self.add("warn", message, stage)

    def error(self, message: str, stage: str | None = None) -> None:
        self.add("error", message, stage)

    def has_errors(self) -> bool:
        return any(e.level == "error" for e in self.entries)

    def __iter__(self):
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)


@dataclass
class OutputDescriptor:
    path: Path
    kind: str = "file"  # "file" | "dir"
    count: int = 1
    label: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": str(self.path),
            "kind": self.kind,
            "count": self.count,
            "label": self.label or self.path.name,
        }


@dataclass
class ProcessResult:
    success: bool
    outputs: list[OutputDescriptor] = field(default_factory=list)
    primary_output: Path | None = None
    error: str | None = None
    logs: list[LogEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "success": self.success,
            "logs": [e.to_dict() for e in self.logs],
            "outputs": [o.to_dict() for o in self.outputs],
        }
        if self.outputs:
            d["output"] = "\n".join(o.label or o.path.name for o in self.outputs)
        if self.primary_output is not None:
            d["primaryOutput"] = str(self.primary_output)
        if self.error:
            d["error"] = self.error
        return d


@dataclass
class PreviewResult:
    success: bool
    image_data: str | None = None
    width: int | None = None
    height: int | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if not self.success:
            return {"success": False, "error": self.error or "Preview failed"}
        return {"success": True, "imageData": self.image_data, "width": self.width, "height": self.height}


@dataclass
class FrameEditResult:
    success: bool
    frame_count: int | None = None
    frame_delay: int | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if not self.success:
            return {"success": False, "error": self.error or "Frame edit failed"}
        d: dict[str, Any] = {"success": True, "frameCount": self.frame_count}
        if self.frame_delay is not None:
            d["frameDelay"] = self.frame_delay
        return d
