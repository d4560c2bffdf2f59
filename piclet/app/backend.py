from __future__ import annotations

import asyncio
import base64
import binascii
import contextlib
from typing import Any, Awaitable, Callable

from PySide6.QtCore import Property, QObject, QThread, Signal, Slot

from piclet.app.state.session_state import SessionStateObject
from piclet.errors import PicletError
from piclet.logger import get_logger
from piclet.pipeline.results import FrameEditResult, PreviewResult, ProcessResult
from piclet.pipeline.session import SessionState
from piclet.pipeline.stages import PipelineRequest
from piclet.service import PicletTool

_logger = get_logger("backend")

TaskFactory = Callable[[], Awaitable[Any]]

# Commands whose result may change the session's current input
_SESSION_MUTATING = {"frameEdit", "loadImage"}


class _TaskWorker(QThread):
    """Runs one coroutine to completion on its own event loop."""

    done = Signal(str, object)  # command, result
    failed = Signal(str, str)  # command, message

    def __init__(self, command: str, factory: TaskFactory) -> None:
        super().__init__()
        self.command = command
        self._factory = factory

    def run(self) -> None:
        try:
            result = asyncio.run(self._factory())
        except Exception as ex:
            _logger.exception("task %s crashed", self.command)
            self.failed.emit(self.command, str(ex) or type(ex).__name__)
            return
        self.done.emit(self.command, result)


class PicletBackend(QObject):
    """Single backend object exposed to the front-end.

    Front-end → Python: backend.dispatch(cmd, payload)
    Python → front-end: backend.taskEvent(dict)
    Bindings: backend.session

    One command runs at a time; a command arriving while another is running is
    answered with an error event.
    """

    taskEvent = Signal(object, name="taskEvent")

    def __init__(
        self,
        tool: PicletTool | None = None,
        parent: QObject | None = None,
        *,
        threaded: bool = True,
    ) -> None:
        super().__init__(parent)
        self._tool = tool or PicletTool()
        self._threaded = threaded
        self._session: SessionState | None = None
        self._session_obj = SessionStateObject(self)
        self._worker: _TaskWorker | None = None
        self._running: str | None = None

    def _get_session(self) -> SessionStateObject:
        return self._session_obj

    session = Property(QObject, _get_session, constant=True)  # type: ignore[arg-type]

    @property
    def state(self) -> SessionState | None:
        return self._session

    # ---- session lifecycle ----
    def open_file(self, path: str) -> dict[str, Any]:
        """Open ``path`` synchronously (startup). Returns the image info dict."""
        self._close_session()
        try:
            self._session = asyncio.run(self._tool.open_session(path))
        except PicletError as e:
            _logger.error("open failed: %s", e)
            return {"success": False, "error": str(e)}
        self._session_obj.sync(self._session)
        return {"success": True, **self._session.to_dict()}

    def _close_session(self) -> None:
        if self._session is not None:
            self._tool.close_session(self._session)
            self._session = None

    def shutdown(self) -> None:
        """Abandon the session: no further stages start and owned temps are removed."""
        self._close_session()
        if self._worker is not None and self._worker.isRunning():
            self._worker.wait(5000)

    # ---- command entry ----
    @Slot(str, "QVariant")  # type: ignore[call-overload]
    def dispatch(self, cmd: str, payload: object | None = None) -> None:
        command = str(cmd or "").strip()
        data = _payload_dict(payload)
        if not command:
            self._emit_error("", "Empty cmd")
            return

        if command == "open":
            info = self.open_file(str(data.get("path") or ""))
            self._emit(command, "finished", info)
            return

        if command == "close":
            self.shutdown()
            self._emit(command, "finished", {"success": True})
            return

        session = self._session
        if session is None or session.closed:
            self._emit_error(command, "No image loaded")
            return
        if self._running is not None:
            self._emit_error(command, f"Busy: {self._running} is still running")
            return

        try:
            factory = self._build_task(command, session, data)
        except (PicletError, KeyError, TypeError, ValueError, binascii.Error) as e:
            self._emit_error(command, str(e))
            return
        if factory is None:
            self._emit_error(command, f"Unknown cmd: {command}")
            return
        self._start(command, factory)

    def _build_task(self, command: str, session: SessionState, data: dict[str, Any]) -> TaskFactory | None:
        tool = self._tool
        if command == "preview":
            request = PipelineRequest.from_payload(data)
            return lambda: tool.run_preview(session, request)
        if command == "process":
            request = PipelineRequest.from_payload(data)
            return lambda: tool.run_process(session, request)
        if command == "framePreview":
            index = int(data.get("frameIndex", 0))
            request = PipelineRequest.from_payload(data)
            return lambda: tool.run_frame_preview(session, index, request)
        if command == "frameEdit":
            kind = str(data.get("kind") or "")
            params = dict(data)
            if "data" in params:
                params["data"] = _decode_image_data(params["data"])
            return lambda: tool.run_frame_edit(session, kind, params)
        if command == "gifExport":
            mode = str(data.get("mode") or "gif")
            request = PipelineRequest.from_payload(data)
            delay = data.get("delay")
            loop = data.get("loop")
            return lambda: tool.run_gif_export(
                session,
                mode,
                request,
                frame_index=int(data.get("frameIndex", 0)),
                delay=int(delay) if delay is not None else None,
                loop=int(loop) if loop is not None else None,
            )
        if command == "loadImage":
            raw = _decode_image_data(data.get("data"))
            name = str(data.get("fileName") or "image.png")
            return lambda: tool.load_replacement_image(session, raw, name)
        return None

    def _start(self, command: str, factory: TaskFactory) -> None:
        self._running = command
        self._session_obj._set_busy(True)
        self._emit(command, "started", {})
        if not self._threaded:
            try:
                result = asyncio.run(factory())
            except Exception as ex:
                _logger.exception("task %s crashed", command)
                self._on_task_failed(command, str(ex) or type(ex).__name__)
                return
            self._on_task_done(command, result)
            return

        worker = _TaskWorker(command, factory)
        worker.done.connect(self._on_task_done)
        worker.failed.connect(self._on_task_failed)
        worker.finished.connect(self._on_worker_finished)
        self._worker = worker
        worker.start()

    # ---- worker signals -> taskEvent ----
    def _finish(self) -> None:
        self._running = None
        self._session_obj._set_busy(False)

    def _on_task_done(self, command: str, result: object) -> None:
        self._finish()
        if command in _SESSION_MUTATING and self._session is not None:
            self._session_obj.sync(self._session)
        if isinstance(result, (ProcessResult, PreviewResult, FrameEditResult)):
            body = result.to_dict()
        elif isinstance(result, dict):
            body = dict(result)
        else:
            body = {"success": bool(result)}
        self._emit(command, "finished" if body.get("success") else "error", body)

    def _on_task_failed(self, command: str, message: str) -> None:
        self._finish()
        self._emit_error(command, message)

    def _on_worker_finished(self) -> None:
        self._worker = None

    def _emit(self, command: str, state: str, body: dict[str, Any]) -> None:
        self.taskEvent.emit({"type": "task", "name": command, "state": state, **body})

    def _emit_error(self, command: str, message: str) -> None:
        _logger.debug("%s: %s", command or "dispatch", message)
        self._emit(command, "error", {"success": False, "error": message})


def _payload_dict(payload: object | None) -> dict[str, Any]:
    """Normalize a front-end payload to a plain dict.

    JS objects may arrive as QJSValue; convert them when possible.
    """
    if payload is None:
        return {}
    if payload.__class__.__name__ == "QJSValue" and hasattr(payload, "toVariant"):
        with contextlib.suppress(Exception):
            payload = payload.toVariant()  # type: ignore[attr-defined]
    if isinstance(payload, dict):
        return dict(payload)
    return {}


def _decode_image_data(data: object) -> bytes:
    """Accept raw bytes, base64 text or a ``data:`` URL."""
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    if not isinstance(data, str) or not data:
        raise ValueError("No image data")
    if data.startswith("data:"):
        data = data.split(",", 1)[1]
    return base64.b64decode(data, validate=True)
