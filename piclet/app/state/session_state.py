from __future__ import annotations

from PySide6.QtCore import Property, QObject, Signal

from piclet.pipeline.session import SessionState


class SessionStateObject(QObject):
    """Bindable mirror of the backend's ``SessionState``."""

    filePathChanged = Signal(str)
    fileNameChanged = Signal(str)
    widthChanged = Signal(int)
    heightChanged = Signal(int)
    borderColorChanged = Signal(str)
    frameCountChanged = Signal(int)
    frameDelayChanged = Signal(int)
    busyChanged = Signal(bool)

    def __init__(self, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._file_path = ""
        self._file_name = ""
        self._width = 0
        self._height = 0
        self._border_color = ""
        self._frame_count = 1
        self._frame_delay = 0
        self._busy = False

    # ---- read-only properties (mutate via backend) ----
    def _get_file_path(self) -> str:
        return str(self._file_path)

    filePath = Property(str, _get_file_path, notify=filePathChanged)  # type: ignore[arg-type]

    def _get_file_name(self) -> str:
        return str(self._file_name)

    fileName = Property(str, _get_file_name, notify=fileNameChanged)  # type: ignore[arg-type]

    def _get_width(self) -> int:
        return int(self._width)

    width = Property(int, _get_width, notify=widthChanged)  # type: ignore[arg-type]

    def _get_height(self) -> int:
        return int(self._height)

    height = Property(int, _get_height, notify=heightChanged)  # type: ignore[arg-type]

    def _get_border_color(self) -> str:
        return str(self._border_color)

    borderColor = Property(str, _get_border_color, notify=borderColorChanged)  # type: ignore[arg-type]

    def _get_frame_count(self) -> int:
        return int(self._frame_count)

    frameCount = Property(int, _get_frame_count, notify=frameCountChanged)  # type: ignore[arg-type]

    def _get_frame_delay(self) -> int:
        return int(self._frame_delay)

    frameDelay = Property(int, _get_frame_delay, notify=frameDelayChanged)  # type: ignore[arg-type]

    def _get_busy(self) -> bool:
        return bool(self._busy)

    busy = Property(bool, _get_busy, notify=busyChanged)  # type: ignore[arg-type]

    # ---- internal setters (called by backend) ----
    def _set_file_path(self, path: str) -> None:
        p = str(path or "")
        if p == self._file_path:
            return
        self._file_path = p
        self.filePathChanged.emit(p)

    def _set_file_name(self, name: str) -> None:
        n = str(name or "")
        if n == self._file_name:
            return
        self._file_name = n
        self.fileNameChanged.emit(n)

    def _set_size(self, width: int, height: int) -> None:
        w, h = int(width), int(height)
        if w != self._width:
            self._width = w
            self.widthChanged.emit(w)
        if h != self._height:
            self._height = h
            self.heightChanged.emit(h)

    def _set_border_color(self, color: str | None) -> None:
        c = str(color or "")
        if c == self._border_color:
            return
        self._border_color = c
        self.borderColorChanged.emit(c)

    def _set_frames(self, count: int, delay: int | None) -> None:
        n = max(1, int(count))
        d = int(delay or 0)
        if n != self._frame_count:
            self._frame_count = n
            self.frameCountChanged.emit(n)
        if d != self._frame_delay:
            self._frame_delay = d
            self.frameDelayChanged.emit(d)

    def _set_busy(self, busy: bool) -> None:
        v = bool(busy)
        if v == self._busy:
            return
        self._busy = v
        self.busyChanged.emit(v)

    def sync(self, session: SessionState) -> None:
        self._set_file_path(str(session.current_input))
        self._set_file_name(session.file_name)
        self._set_size(session.width, session.height)
        self._set_border_color(session.background_color)
        self._set_frames(session.frame_count, session.frame_delay)
