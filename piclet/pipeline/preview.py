"""Side-effect-free preview of a pipeline request.

Runs the same stage handlers as the executor inside a private temp arena
(pack outputs are skipped) and returns the final working image as an inline
PNG data URL, downscaled to ``max_size`` unless full resolution is requested.
"""

from __future__ import annotations

import base64
from pathlib import Path

from piclet.errors import PicletError, StageError
from piclet.image_engine import ImageOps
from piclet.logger import get_logger
from piclet.path_utils import ArtifactChain, TempArena
from piclet.pipeline.executor import check_engine, check_source
from piclet.pipeline.handlers import HANDLERS, StageContext
from piclet.pipeline.results import PreviewResult, ProcessLog
from piclet.pipeline.stages import PipelineRequest, describe_stage

_logger = get_logger("preview")

PREVIEW_MAX_SIZE = 512


def encode_data_url(path: str | Path, mime: str = "image/png") -> str:
    data = Path(path).read_bytes()
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


class PreviewGenerator:
    def __init__(
        self, ops: ImageOps, temp_root: str | Path | None = None, max_size: int = PREVIEW_MAX_SIZE
    ) -> None:
        self.ops = ops
        self.temp_root = temp_root
        self.max_size = max_size

    async def preview(
        self,
        source: str | Path,
        request: PipelineRequest,
        *,
        background_color: str | None = None,
    ) -> PreviewResult:
        source = Path(source)
        log = ProcessLog(_logger)
        try:
            await check_engine(self.ops)
            await check_source(self.ops, source)
            with TempArena(self.temp_root, prefix="piclet-preview-") as arena:
                chain = ArtifactChain(arena, source)
                if not (request.original or request.is_empty):
                    ctx = StageContext(
                        ops=self.ops,
                        arena=arena,
                        chain=chain,
                        log=log,
                        output_base=arena.allocate("out"),
                        background_color=background_color,
                        preview=True,
                    )
                    for kind in request.active_stages:
                        await HANDLERS[kind](ctx, request.params(kind))
                return await self._encode(arena, chain, request.full_resolution)
        except StageError as e:
            _tag, label = describe_stage(e.stage)
            return PreviewResult(False, error=f"{label}: {e.message}")
        except PicletError as e:
            return PreviewResult(False, error=str(e))
        except Exception as e:
            _logger.exception("preview crashed")
            return PreviewResult(False, error=str(e) or type(e).__name__)

    async def _encode(self, arena: TempArena, chain: ArtifactChain, full_resolution: bool) -> PreviewResult:
        out = arena.allocate("preview", ".png")
        if full_resolution:
            res = await self.ops.convert(chain.current, out)
        else:
            res = await self.ops.scale_to_fit(chain.current, out, self.max_size)
        if not res:
            return PreviewResult(False, error=res.error or "Preview encoding failed")
        chain.advance(out)
        width, height = res.data
        return PreviewResult(True, image_data=encode_data_url(out), width=width, height=height)
