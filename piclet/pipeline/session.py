"""Per-session state shared across preview, process and frame-edit requests."""

from __future__ import annotations

import contextlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

from piclet.errors import InvalidInputError, SessionBusyError
from piclet.image_engine import ImageOps
from piclet.logger import get_logger
from piclet.path_utils import abs_path, cleanup

_logger = get_logger("session")


@dataclass
class SessionState:
    """Mutable state of one editing session.

    ``current_input`` always points at an existing, readable image. Fields are
    swapped together through ``swap_input`` only after the new file has been
    validated; a temp file owned by the session is removed when superseded.
    """

    current_input: Path
    output_base: Path
    background_color: str | None = None
    width: int = 0
    height: int = 0
    frame_count: int = 1
    frame_delay: int | None = None
    owned_temp: Path | None = None
    animation_state: str = "loaded"
    closed: bool = False
    _busy: bool = field(default=False, repr=False)

    @property
    def is_animated(self) -> bool:
        return self.frame_count > 1

    @property
    def file_name(self) -> str:
        return self.output_base.name

    @classmethod
    async def open(cls, ops: ImageOps, path: str | Path) -> SessionState:
        src = abs_path(path)
        state = cls(current_input=src, output_base=src)
        fields = await _probe(ops, src)
        state._apply(src, fields)
        _logger.debug("session opened: %s (%dx%d, %d frames)", src.name, state.width, state.height, state.frame_count)
        return state

    def _apply(self, path: Path, fields: dict) -> None:
        self.current_input = path
        self.width, self.height = fields["dimensions"]
        self.frame_count = fields["frame_count"]
        self.frame_delay = fields["frame_delay"]
        if "background_color" in fields:
            self.background_color = fields["background_color"]

    async def swap_input(
        self,
        ops: ImageOps,
        new_path: str | Path,
        *,
        owned: bool = True,
        output_base: str | Path | None = None,
        redetect_color: bool = False,
    ) -> None:
        """Make ``new_path`` the current input once it is confirmed readable."""
        path = Path(new_path)
        try:
            fields = await _probe(ops, path, detect_color=redetect_color)
        except InvalidInputError:
            if owned:
                cleanup(path)
            raise
        previous = self.owned_temp
        self._apply(path, fields)
        self.owned_temp = path if owned else None
        if output_base is not None:
            self.output_base = Path(output_base)
        if previous is not None and previous != path:
            cleanup(previous)
        _logger.debug("session input -> %s (%d frames)", path.name, self.frame_count)

    @contextlib.contextmanager
    def begin_request(self) -> Iterator[SessionState]:
        if self.closed:
            raise SessionBusyError("Session is closed")
        if self._busy:
            raise SessionBusyError("Another request is still running")
        self._busy = True
        try:
            yield self
        finally:
            self._busy = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self.owned_temp is not None:
            cleanup(self.owned_temp)
            self.owned_temp = None
        _logger.debug("session closed: %s", self.output_base.name)

    def to_dict(self) -> dict:
        d = {
            "filePath": str(self.current_input),
            "fileName": self.file_name,
            "width": self.width,
            "height": self.height,
            "borderColor": self.background_color,
            "frameCount": self.frame_count,
        }
        if self.frame_delay is not None:
            d["frameDelay"] = self.frame_delay
        return d


async def _probe(ops: ImageOps, path: Path, detect_color: bool = True) -> dict:
    if not path.is_file():
        raise InvalidInputError(f"File not found: {path}")
    dims = await ops.dimensions(path)
    if not dims:
        raise InvalidInputError(f"Failed to read image dimensions: {path.name}")
    fields: dict = {"dimensions": tuple(dims.data), "frame_count": 1, "frame_delay": None}

    count = await ops.frame_count(path)
    if count and count.data > 1:
        fields["frame_count"] = int(count.data)
        delay = await ops.frame_delay(path)
        fields["frame_delay"] = int(delay.data) if delay else None

    if detect_color:
        color = await ops.dominant_corner_color(path)
        fields["background_color"] = color.data if color else None
    return fields
