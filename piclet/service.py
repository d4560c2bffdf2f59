"""Public surface used by the CLI and the Qt backend.

``PicletTool`` binds the facade, the executor, the preview generator and the
animation controller to one ``SessionState``. Each ``run_*`` call holds the
session for its whole duration; a concurrent call is refused rather than
interleaved.
"""

from __future__ import annotations

import base64
from pathlib import Path
from typing import Any, Mapping

from .errors import InvalidInputError, PicletError
from .image_engine import ImageOps
from .logger import get_logger
from .path_utils import write_temp_bytes
from .pipeline.animation import AnimationController, AnimationState, ExportMode
from .pipeline.executor import PipelineExecutor, check_engine
from .pipeline.preview import PreviewGenerator
from .pipeline.results import FrameEditResult, PreviewResult, ProcessLog, ProcessResult
from .pipeline.session import SessionState
from .pipeline.stages import PipelineRequest
from .settings_manager import SettingsManager

_logger = get_logger("service")


class PicletTool:
    def __init__(self, settings: SettingsManager | None = None, ops: ImageOps | None = None) -> None:
        self.settings = settings or SettingsManager()
        self.ops = ops or ImageOps(timeout=self.settings.engine_timeout)
        self.temp_root = self.settings.temp_dir
        self.preview_max_size = self.settings.preview_max_size
        self.executor = PipelineExecutor(self.ops, self.temp_root)
        self.previewer = PreviewGenerator(self.ops, self.temp_root, max_size=self.preview_max_size)

    def _frames(self, session: SessionState) -> AnimationController:
        return AnimationController(
            self.ops, session, temp_root=self.temp_root, preview_max_size=self.preview_max_size
        )

    async def open_session(self, path: str | Path) -> SessionState:
        """Load ``path`` and detect its size, frame count and background colour.

        Raises ``MissingDependencyError`` / ``InvalidInputError``.
        """
        await check_engine(self.ops)
        return await SessionState.open(self.ops, path)

    async def run_preview(self, session: SessionState, request: PipelineRequest) -> PreviewResult:
        try:
            with session.begin_request():
                if session.is_animated:
                    # Animated input previews on its first frame
                    return await self._frames(session).apply_pipeline_to_frame(0, request)
                return await self.previewer.preview(
                    session.current_input, request, background_color=session.background_color
                )
        except PicletError as e:
            return PreviewResult(False, error=str(e))

    async def run_process(self, session: SessionState, request: PipelineRequest) -> ProcessResult:
        try:
            with session.begin_request():
                return await self.executor.execute(
                    session.current_input,
                    request,
                    background_color=session.background_color,
                    output_base=session.output_base,
                    should_continue=lambda: not session.closed,
                )
        except PicletError as e:
            log = ProcessLog(_logger)
            log.error(str(e))
            return ProcessResult(False, error=str(e), logs=log.entries)

    async def run_frame_preview(
        self, session: SessionState, frame_index: int, request: PipelineRequest
    ) -> PreviewResult:
        try:
            with session.begin_request():
                return await self._frames(session).apply_pipeline_to_frame(frame_index, request)
        except PicletError as e:
            return PreviewResult(False, error=str(e))

    async def run_frame_edit(self, session: SessionState, edit_kind: str, params: Mapping[str, Any]) -> FrameEditResult:
        try:
            with session.begin_request():
                return await self._frames(session).edit(edit_kind, dict(params))
        except PicletError as e:
            return FrameEditResult(False, error=str(e))

    async def run_gif_export(
        self,
        session: SessionState,
        export_mode: ExportMode | str,
        request: PipelineRequest | None = None,
        *,
        frame_index: int = 0,
        delay: int | None = None,
        loop: int | None = None,
    ) -> ProcessResult:
        try:
            with session.begin_request():
                return await self._frames(session).export(
                    export_mode, request, frame_index=frame_index, delay=delay, loop=loop
                )
        except PicletError as e:
            log = ProcessLog(_logger)
            log.error(str(e))
            return ProcessResult(False, error=str(e), logs=log.entries)

    async def load_replacement_image(self, session: SessionState, raw_bytes: bytes, file_name: str) -> dict[str, Any]:
        """Swap the session input for an uploaded image.

        Durable outputs keep going beside the originally opened file, named
        after the uploaded file.
        """
        try:
            with session.begin_request():
                if not raw_bytes:
                    raise InvalidInputError("No image data")
                tmp = write_temp_bytes(raw_bytes, file_name, self.temp_root)
                base = session.output_base.parent / Path(file_name).name
                await session.swap_input(self.ops, tmp, owned=True, output_base=base, redetect_color=True)
                session.animation_state = AnimationState.LOADED.value
        except PicletError as e:
            return {"success": False, "error": str(e)}
        return {"success": True, **session.to_dict(), "fileName": Path(file_name).name}

    async def preview_to_file(self, session: SessionState, request: PipelineRequest, out: str | Path) -> PreviewResult:
        """Render a preview and also write it to ``out`` (CLI helper)."""
        result = await self.run_preview(session, request)
        if result.success and result.image_data:
            payload = result.image_data.split(",", 1)[1]
            Path(out).write_bytes(base64.b64decode(payload))
        return result

    def close_session(self, session: SessionState) -> None:
        session.close()
