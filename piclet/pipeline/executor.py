"""Pipeline executor: runs the selected stages in fixed order and materializes outputs."""

from __future__ import annotations

from pathlib import Path
from typing import Awaitable, Callable

from piclet.errors import InvalidInputError, MissingDependencyError, PicletError, StageError
from piclet.image_engine import ImageOps
from piclet.logger import get_logger
from piclet.path_utils import ArtifactChain, TempArena, output_path, promote
from piclet.pipeline.handlers import DURABLE_SUFFIXES, HANDLERS, StageContext
from piclet.pipeline.results import OutputDescriptor, ProcessLog, ProcessResult
from piclet.pipeline.stages import PipelineRequest, StageKind, describe_stage

_logger = get_logger("executor")

PostProcess = Callable[[Path, TempArena], Awaitable[Path]]


async def check_engine(ops: ImageOps) -> None:
    res = await ops.check_engine()
    if not res:
        raise MissingDependencyError(f"Image engine not available ({res.error}). Install libvips / pyvips.")
    _logger.debug("engine: libvips %s", res.data)


async def check_source(ops: ImageOps, source: Path) -> tuple[int, int]:
    if not source.is_file():
        raise InvalidInputError(f"File not found: {source}")
    dims = await ops.dimensions(source)
    if not dims:
        raise InvalidInputError(f"Failed to read image dimensions: {source.name}")
    return dims.data


class PipelineExecutor:
    """Runs a ``PipelineRequest`` against one source file.

    ``execute`` never raises: every failure comes back as a ``ProcessResult``
    with ``success=False`` and a stage-scoped log. All working artifacts live in
    a private ``TempArena`` that is removed on every exit path.
    """

    def __init__(self, ops: ImageOps, temp_root: str | Path | None = None) -> None:
        self.ops = ops
        self.temp_root = temp_root

    async def execute(
        self,
        source: str | Path,
        request: PipelineRequest,
        *,
        background_color: str | None = None,
        output_base: str | Path | None = None,
        output_suffix: str | None = None,
        with_dimensions: bool = True,
        animated: bool = False,
        post_process: PostProcess | None = None,
        should_continue: Callable[[], bool] | None = None,
    ) -> ProcessResult:
        log = ProcessLog(_logger)
        source = Path(source)
        base = Path(output_base) if output_base else source
        stages = request.active_stages
        if not stages:
            log.error("No tools selected")
            return ProcessResult(False, error="No tools selected", logs=log.entries)

        outputs: list[OutputDescriptor] = []
        try:
            await check_engine(self.ops)
            await check_source(self.ops, source)
            with TempArena(self.temp_root) as arena:
                chain = ArtifactChain(arena, source)
                ctx = StageContext(
                    ops=self.ops,
                    arena=arena,
                    chain=chain,
                    log=log,
                    output_base=base,
                    background_color=background_color,
                    ext=".gif" if animated else ".png",
                    outputs=outputs,
                )
                for i, kind in enumerate(stages):
                    if should_continue is not None and not should_continue():
                        log.warn("Session closed, remaining stages skipped")
                        return ProcessResult(False, error="Cancelled", logs=log.entries)
                    _logger.debug("stage %d/%d: %s <- %s", i + 1, len(stages), kind.value, chain.current.name)
                    await HANDLERS[kind](ctx, request.params(kind))

                last = stages[-1]
                if last in DURABLE_SUFFIXES:
                    suffix = DURABLE_SUFFIXES[last] if output_suffix is None else output_suffix
                    outputs.append(await self._materialize(ctx, last, suffix, with_dimensions, post_process))
        except StageError as e:
            tag, label = describe_stage(e.stage)
            log.error(e.message, tag)
            return ProcessResult(False, error=f"{label} failed: {e.message}", logs=log.entries)
        except PicletError as e:
            log.error(str(e))
            return ProcessResult(False, error=str(e), logs=log.entries)
        except Exception as e:
            _logger.exception("pipeline crashed")
            log.error(f"Processing failed: {e}")
            return ProcessResult(False, error=str(e) or type(e).__name__, logs=log.entries)

        primary = outputs[0].path if len(outputs) == 1 and outputs[0].kind == "file" else None
        return ProcessResult(True, outputs=outputs, primary_output=primary, logs=log.entries)

    async def _materialize(
        self,
        ctx: StageContext,
        kind: StageKind,
        suffix: str,
        with_dimensions: bool,
        post_process: PostProcess | None,
    ) -> OutputDescriptor:
        final = ctx.chain.current
        if ctx.chain.is_source:
            raise StageError(kind, "Stage produced no output")
        if post_process is not None:
            final = ctx.chain.advance(await post_process(final, ctx.arena))
        dims = None
        if with_dimensions:
            res = await self.ops.dimensions(final)
            dims = tuple(res.data) if res else None
        dest = output_path(ctx.output_base, suffix, final.suffix, dims)
        promote(final, dest)
        ctx.chain.release()
        ctx.log.success(f"Saved {dest.name}")
        return OutputDescriptor(dest, "file", 1)
