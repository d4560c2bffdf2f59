"""Multi-frame controller: frame previews, frame edits and animated exports.

Edits never touch the loaded file. Each one writes a new temp asset that the
session adopts as its current input (the previous edit's temp is removed).

States:
    loaded -> previewing -> edited -> previewing ... -> exported

``exported`` only blocks further frame mutations; previews and exports stay
available.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from piclet.errors import FrameEditError, InvalidInputError, PicletError, StageError
from piclet.image_engine import ImageOps
from piclet.logger import get_logger
from piclet.path_utils import (
    TempArena,
    cleanup,
    new_temp_file,
    output_dir,
    output_path,
    promote,
    write_temp_bytes,
)
from piclet.pipeline.executor import PipelineExecutor
from piclet.pipeline.preview import PreviewGenerator
from piclet.pipeline.results import FrameEditResult, OutputDescriptor, PreviewResult, ProcessLog, ProcessResult
from piclet.pipeline.session import SessionState
from piclet.pipeline.stages import PipelineRequest, StageKind, describe_stage

_logger = get_logger("frames")


class AnimationState(str, Enum):
    LOADED = "loaded"
    PREVIEWING = "previewing"
    EDITED = "edited"
    EXPORTED = "exported"


class ExportMode(str, Enum):
    SINGLE_FRAME = "single"
    ALL_FRAMES = "frames"
    REPROCESSED_GIF = "gif"

    @classmethod
    def parse(cls, value: str | ExportMode) -> ExportMode:
        aliases = {"frame": cls.SINGLE_FRAME, "all": cls.ALL_FRAMES, "animation": cls.REPROCESSED_GIF}
        if isinstance(value, ExportMode):
            return value
        key = str(value).strip().lower()
        if key in aliases:
            return aliases[key]
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"unknown export mode: {value!r}") from None


class EditKind(str, Enum):
    DELETE = "delete"
    REPLACE = "replace"
    DELAY = "delay"
    LOOP = "loop"
    SIMPLIFY = "simplify"


# Per-frame pipelining only makes sense for the image-producing stages
_FRAME_STAGES_EXCLUDED = (StageKind.ICONS, StageKind.STORE_PACK)


class AnimationController:
    def __init__(
        self,
        ops: ImageOps,
        session: SessionState,
        *,
        temp_root: str | Path | None = None,
        preview_max_size: int = 512,
    ) -> None:
        self.ops = ops
        self.session = session
        self.temp_root = temp_root
        self.executor = PipelineExecutor(ops, temp_root)
        self.previewer = PreviewGenerator(ops, temp_root, max_size=preview_max_size)

    @property
    def state(self) -> AnimationState:
        return AnimationState(self.session.animation_state)

    def _set_state(self, state: AnimationState) -> None:
        if state.value != self.session.animation_state:
            _logger.debug("animation state: %s -> %s", self.session.animation_state, state.value)
        self.session.animation_state = state.value

    def _require_animated(self) -> None:
        if not self.session.is_animated:
            raise FrameEditError("Not an animated image")

    def _require_exportable(self) -> None:
        # frame edits may leave a single frame; that result is still exportable
        if self.state not in (AnimationState.EDITED, AnimationState.EXPORTED):
            self._require_animated()

    def _check_index(self, index: int) -> None:
        if index < 0 or index >= self.session.frame_count:
            raise FrameEditError(f"Frame {index} out of range (0..{self.session.frame_count - 1})")

    # ---- non-mutating ----

    async def extract_representative_frame(self, index: int, dst: str | Path) -> Path:
        """Write frame ``index`` of the current input to ``dst`` as a static PNG."""
        self._check_index(index)
        res = await self.ops.extract_frame(self.session.current_input, index, dst)
        if not res:
            raise StageError("frames", f"Failed to extract frame {index}")
        return Path(dst)

    async def apply_pipeline_to_frame(self, index: int, request: PipelineRequest) -> PreviewResult:
        try:
            self._require_animated()
            with TempArena(self.temp_root, prefix="piclet-frame-") as arena:
                frame = await self.extract_representative_frame(index, arena.allocate(f"frame{index}"))
                result = await self.previewer.preview(
                    frame, request.without(StageKind.STORE_PACK), background_color=self.session.background_color
                )
        except PicletError as e:
            return PreviewResult(False, error=getattr(e, "message", None) or str(e))
        if result.success and self.state is not AnimationState.EXPORTED:
            self._set_state(AnimationState.PREVIEWING)
        return result

    # ---- mutations ----

    async def _commit(self, out: Path, expected_frames: int) -> FrameEditResult:
        stored = await self.ops.frame_count(out)
        if not stored or stored.data != expected_frames:
            cleanup(out)
            found = stored.data if stored else "unreadable"
            raise FrameEditError(f"Edit would leave {found} frames instead of {expected_frames}")
        try:
            await self.session.swap_input(self.ops, out, owned=True)
        except InvalidInputError as e:
            raise FrameEditError(f"Edited animation is unreadable: {e}") from e
        self._set_state(AnimationState.EDITED)
        return FrameEditResult(True, frame_count=self.session.frame_count, frame_delay=self.session.frame_delay)

    async def _mutate(self, edit, *args, expected_frames: int | None = None) -> FrameEditResult:
        self._require_animated()
        if self.state is AnimationState.EXPORTED:
            raise FrameEditError("Animation already exported")
        out = new_temp_file(".gif", self.temp_root)
        res = await edit(self.session.current_input, out, *args)
        if not res:
            cleanup(out)
            raise FrameEditError(res.error or "Frame edit failed")
        if expected_frames is None:
            expected_frames = self.session.frame_count
        return await self._commit(out, expected_frames)

    async def delete_frame(self, index: int) -> FrameEditResult:
        self._require_animated()
        self._check_index(index)
        if self.session.frame_count <= 1:
            raise FrameEditError("Cannot delete the only remaining frame")
        return await self._mutate(self.ops.delete_frame, index, expected_frames=self.session.frame_count - 1)

    async def replace_frame(self, index: int, image_bytes: bytes, file_name: str = "frame.png") -> FrameEditResult:
        self._require_animated()
        self._check_index(index)
        if not image_bytes:
            raise FrameEditError("No image data")
        replacement = write_temp_bytes(image_bytes, file_name, self.temp_root)
        try:
            return await self._mutate(self.ops.replace_frame, index, replacement)
        finally:
            cleanup(replacement)

    async def set_delay(self, delay_cs: int) -> FrameEditResult:
        if delay_cs <= 0:
            raise FrameEditError("Delay must be positive")
        return await self._mutate(self.ops.set_frame_delay, int(delay_cs))

    async def set_loop(self, loop: int) -> FrameEditResult:
        if loop < 0:
            raise FrameEditError("Loop count must be >= 0")
        return await self._mutate(self.ops.set_loop_count, int(loop))

    async def simplify(self, skip_factor: int) -> FrameEditResult:
        if skip_factor < 2:
            raise FrameEditError("Skip factor must be >= 2")
        kept = -(-self.session.frame_count // int(skip_factor))
        result = await self._mutate(self.ops.simplify_frames, int(skip_factor), expected_frames=kept)
        _logger.debug("simplified by %d: %d frames, delay %s", skip_factor, result.frame_count, result.frame_delay)
        return result

    async def edit(self, kind: EditKind | str, params: dict) -> FrameEditResult:
        """Apply one frame edit; failures come back as an unsuccessful result."""
        try:
            kind = EditKind(kind)
            if kind is EditKind.DELETE:
                return await self.delete_frame(int(params["index"]))
            if kind is EditKind.REPLACE:
                return await self.replace_frame(
                    int(params["index"]), params["data"], str(params.get("fileName") or "frame.png")
                )
            if kind is EditKind.DELAY:
                return await self.set_delay(int(params["delay"]))
            if kind is EditKind.LOOP:
                return await self.set_loop(int(params["loop"]))
            return await self.simplify(int(params["skip"]))
        except (KeyError, TypeError, ValueError) as e:
            return FrameEditResult(False, error=f"Invalid frame edit: {e}")
        except PicletError as e:
            return FrameEditResult(False, error=str(e))
        except Exception as e:
            _logger.exception("frame edit crashed")
            return FrameEditResult(False, error=str(e) or type(e).__name__)

    # ---- export ----

    async def export(
        self,
        mode: ExportMode | str,
        request: PipelineRequest | None = None,
        *,
        frame_index: int = 0,
        delay: int | None = None,
        loop: int | None = None,
    ) -> ProcessResult:
        request = request or PipelineRequest()
        log = ProcessLog(_logger)
        try:
            mode = ExportMode.parse(mode)
            self._require_exportable()
            if mode is ExportMode.SINGLE_FRAME:
                result = await self._export_single(frame_index, request, log)
            elif mode is ExportMode.ALL_FRAMES:
                result = await self._export_frames(request, log)
            else:
                result = await self._export_gif(request, log, delay, loop)
        except StageError as e:
            log.error(e.message, describe_stage(e.stage)[0])
            return ProcessResult(False, error=e.message, logs=log.entries)
        except (PicletError, ValueError) as e:
            log.error(str(e))
            return ProcessResult(False, error=str(e), logs=log.entries)
        except Exception as e:
            _logger.exception("export crashed")
            log.error(f"Export failed: {e}")
            return ProcessResult(False, error=str(e) or type(e).__name__, logs=log.entries)
        if result.success:
            self._set_state(AnimationState.EXPORTED)
        return result

    async def _export_single(self, index: int, request: PipelineRequest, log: ProcessLog) -> ProcessResult:
        suffix = f"_frame{index + 1}"
        base = self.session.output_base
        with TempArena(self.temp_root, prefix="piclet-export-") as arena:
            frame = await self.extract_representative_frame(index, arena.allocate(f"frame{index}"))
            if not request.is_empty:
                return await self.executor.execute(
                    frame,
                    request,
                    background_color=self.session.background_color,
                    output_base=base,
                    output_suffix=suffix,
                )
            dims = await self.ops.dimensions(frame)
            dest = promote(frame, output_path(base, suffix, ".png", tuple(dims.data) if dims else None))
        log.success(f"Saved {dest.name}")
        return ProcessResult(True, [OutputDescriptor(dest, "file", 1)], primary_output=dest, logs=log.entries)

    async def _export_frames(self, request: PipelineRequest, log: ProcessLog) -> ProcessResult:
        frame_request = request.without(*_FRAME_STAGES_EXCLUDED)
        dest_dir = output_dir(self.session.output_base, "_frames")
        with TempArena(self.temp_root, prefix="piclet-export-") as arena:
            staging = arena.allocate_dir("frames")
            res = await self.ops.extract_all_frames(self.session.current_input, staging)
            if not res:
                raise StageError("frames", "Failed to extract frames")
            frames: list[Path] = list(res.data)
            log.info(f"Extracted {len(frames)} frames")
            if not frame_request.is_empty:
                for frame in frames:
                    processed = await self.executor.execute(
                        frame,
                        frame_request,
                        background_color=self.session.background_color,
                        output_base=frame,
                        output_suffix="",
                        with_dimensions=False,
                    )
                    if not processed.success:
                        log.entries.extend(processed.logs)
                        raise StageError("frames", f"{frame.name}: {processed.error}")
                log.success(f"Processed {len(frames)} frames")
            for frame in frames:
                promote(frame, dest_dir / frame.name)
        log.success(f"{len(frames)} frames → {dest_dir.name}/")
        out = OutputDescriptor(dest_dir, "dir", len(frames), f"{len(frames)} frames → {dest_dir.name}/")
        return ProcessResult(True, [out], logs=log.entries)

    async def _restamp(self, path: Path, arena: TempArena, delay: int | None, loop: int | None) -> Path:
        current = path
        if delay is not None:
            out = arena.allocate("delay", ".gif")
            if not await self.ops.set_frame_delay(current, out, int(delay)):
                raise StageError("frames", "Failed to set frame delay")
            current = out
        if loop is not None:
            out = arena.allocate("loop", ".gif")
            if not await self.ops.set_loop_count(current, out, int(loop)):
                raise StageError("frames", "Failed to set loop count")
            if current != path:
                cleanup(current)
            current = out
        return current

    async def _export_gif(
        self, request: PipelineRequest, log: ProcessLog, delay: int | None, loop: int | None
    ) -> ProcessResult:
        async def restamp(path: Path, arena: TempArena) -> Path:
            return await self._restamp(path, arena, delay, loop)

        if not request.is_empty:
            return await self.executor.execute(
                self.session.current_input,
                request,
                background_color=self.session.background_color,
                output_base=self.session.output_base,
                animated=True,
                post_process=restamp if (delay is not None or loop is not None) else None,
            )

        with TempArena(self.temp_root, prefix="piclet-export-") as arena:
            work = arena.allocate("edited", ".gif")
            res = await self.ops.convert(self.session.current_input, work)
            if not res:
                raise StageError("frames", "Failed to write animation")
            final = await self._restamp(work, arena, delay, loop)
            dims = await self.ops.dimensions(final)
            size = tuple(dims.data) if dims else None
            dest = promote(final, output_path(self.session.output_base, "_edited", ".gif", size))
        log.success(f"Saved {dest.name}")
        return ProcessResult(True, [OutputDescriptor(dest, "file", 1)], primary_output=dest, logs=log.entries)
