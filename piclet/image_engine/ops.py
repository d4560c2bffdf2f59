"""Async facade over the raster primitives.

Every method runs its primitive on a worker thread with a per-call timeout and
returns an ``OpResult``; nothing here raises. Callers decide whether a failed
result is fatal.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Sequence

from piclet.image_engine import animation, icons, vips_ops
from piclet.logger import get_logger

_logger = get_logger("ops")

PathLike = str | Path


@dataclass
class OpResult:
    ok: bool
    data: Any = None
    error: str | None = None

    def __bool__(self) -> bool:
        return self.ok

    @classmethod
    def fail(cls, error: str) -> OpResult:
        return cls(False, None, error)


class ImageOps:
    """Named async wrappers around ``vips_ops``, ``animation`` and ``icons``.

    ``timeout`` is in seconds; ``None`` disables it.
    """

    def __init__(self, timeout: float | None = 60.0) -> None:
        self.timeout = timeout

    async def _call(self, name: str, fn: Callable[..., Any], *args: Any) -> OpResult:
        try:
            data = await asyncio.wait_for(asyncio.to_thread(fn, *args), self.timeout)
        except asyncio.TimeoutError:
            _logger.debug("%s timed out after %ss", name, self.timeout)
            return OpResult.fail(f"{name} timed out")
        except Exception as e:
            _logger.debug("%s failed: %s", name, e)
            return OpResult.fail(f"{name} failed: {e}")
        return OpResult(True, data)

    # ---- engine / queries ----
    async def check_engine(self) -> OpResult:
        return await self._call("check_engine", vips_ops.engine_version)

    async def dimensions(self, path: PathLike) -> OpResult:
        return await self._call("dimensions", vips_ops.dimensions, path)

    async def dominant_corner_color(self, path: PathLike) -> OpResult:
        return await self._call("dominant_corner_color", vips_ops.dominant_corner_color, path)

    # ---- geometry ----
    async def trim(self, src: PathLike, dst: PathLike) -> OpResult:
        return await self._call("trim", vips_ops.trim, src, dst)

    async def squarify(self, src: PathLike, dst: PathLike) -> OpResult:
        return await self._call("squarify", vips_ops.squarify, src, dst)

    async def scale_to_square_size(self, src: PathLike, dst: PathLike, size: int) -> OpResult:
        return await self._call("scale_to_square_size", vips_ops.scale_to_square_size, src, dst, size)

    async def scale_with_padding(self, src: PathLike, dst: PathLike, width: int, height: int) -> OpResult:
        return await self._call("scale_with_padding", vips_ops.scale_with_padding, src, dst, width, height)

    async def resize_exact(self, src: PathLike, dst: PathLike, width: int, height: int) -> OpResult:
        return await self._call("resize_exact", vips_ops.resize_exact, src, dst, width, height)

    async def scale_fill_crop(self, src: PathLike, dst: PathLike, width: int, height: int) -> OpResult:
        return await self._call("scale_fill_crop", vips_ops.scale_fill_crop, src, dst, width, height)

    async def scale_to_fit(self, src: PathLike, dst: PathLike, max_size: int) -> OpResult:
        return await self._call("scale_to_fit", vips_ops.scale_to_fit, src, dst, max_size)

    async def convert(self, src: PathLike, dst: PathLike) -> OpResult:
        return await self._call("convert", vips_ops.convert, src, dst)

    # ---- background removal ----
    async def remove_background_global(self, src: PathLike, dst: PathLike, color: str, fuzz: float) -> OpResult:
        return await self._call("remove_background_global", vips_ops.remove_background_global, src, dst, color, fuzz)

    async def remove_background_border_flood(
        self, src: PathLike, dst: PathLike, color: str, fuzz: float
    ) -> OpResult:
        return await self._call(
            "remove_background_border_flood", vips_ops.remove_background_border_flood, src, dst, color, fuzz
        )

    async def remove_background_edge_feather(
        self, src: PathLike, dst: PathLike, color: str, fuzz: float, strength: float
    ) -> OpResult:
        return await self._call(
            "remove_background_edge_feather",
            vips_ops.remove_background_edge_feather,
            src,
            dst,
            color,
            fuzz,
            strength,
        )

    # ---- icons ----
    async def pack_multi_resolution_icon(self, src: PathLike, dst: PathLike, sizes: Sequence[int]) -> OpResult:
        return await self._call("pack_multi_resolution_icon", icons.pack_multi_resolution_icon, src, dst, sizes)

    async def pack_icon_from_multiple_sources(self, srcs: Sequence[PathLike], dst: PathLike) -> OpResult:
        return await self._call("pack_icon_from_multiple_sources", icons.pack_icon_from_multiple_sources, srcs, dst)

    # ---- frames ----
    async def frame_count(self, path: PathLike) -> OpResult:
        return await self._call("frame_count", animation.frame_count, path)

    async def is_multi_frame_format(self, path: PathLike) -> OpResult:
        return await self._call("is_multi_frame_format", animation.is_multi_frame_format, path)

    async def extract_frame(self, path: PathLike, index: int, dst: PathLike) -> OpResult:
        return await self._call("extract_frame", animation.extract_frame, path, index, dst)

    async def extract_all_frames(self, path: PathLike, dest_dir: PathLike) -> OpResult:
        return await self._call("extract_all_frames", animation.extract_all_frames, path, dest_dir)

    async def frame_delay(self, path: PathLike) -> OpResult:
        return await self._call("frame_delay", animation.frame_delay, path)

    async def set_frame_delay(self, path: PathLike, dst: PathLike, delay_cs: int) -> OpResult:
        return await self._call("set_frame_delay", animation.set_frame_delay, path, dst, delay_cs)

    async def set_loop_count(self, path: PathLike, dst: PathLike, loop: int) -> OpResult:
        return await self._call("set_loop_count", animation.set_loop_count, path, dst, loop)

    async def simplify_frames(self, path: PathLike, dst: PathLike, skip_factor: int) -> OpResult:
        return await self._call("simplify_frames", animation.simplify_frames, path, dst, skip_factor)

    async def delete_frame(self, path: PathLike, dst: PathLike, index: int) -> OpResult:
        return await self._call("delete_frame", animation.delete_frame, path, dst, index)

    async def replace_frame(self, path: PathLike, dst: PathLike, index: int, image_path: PathLike) -> OpResult:
        return await self._call("replace_frame", animation.replace_frame, path, dst, index, image_path)

    # ---- sibling tools ----
    async def apply_filter(self, src: PathLike, dst: PathLike, name: str) -> OpResult:
        return await self._call("apply_filter", vips_ops.apply_filter, src, dst, name)

    async def transform(self, src: PathLike, dst: PathLike, name: str) -> OpResult:
        return await self._call("transform", vips_ops.transform, src, dst, name)

    async def add_border(self, src: PathLike, dst: PathLike, width: int, color: str) -> OpResult:
        return await self._call("add_border", vips_ops.add_border, src, dst, width, color)

    async def replace_color(
        self, src: PathLike, dst: PathLike, from_color: str, to_color: str, fuzz: float
    ) -> OpResult:
        return await self._call("replace_color", vips_ops.replace_color, src, dst, from_color, to_color, fuzz)
