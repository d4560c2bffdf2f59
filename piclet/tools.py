"""One-shot tools sharing the image facade: filter, transform, border, recolor, extract-frames.

Each tool writes a single durable output beside the input (``.gif`` for GIF
input, ``.png`` otherwise) and returns a ``ProcessResult``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Awaitable, Callable

from .errors import InvalidRequestError, PicletError
from .image_engine import ImageOps, OpResult
from .image_engine.vips_ops import FILTERS, TRANSFORMS
from .logger import get_logger
from .path_utils import TempArena, abs_path, output_dir, output_path, promote
from .pipeline.executor import check_engine, check_source
from .pipeline.results import OutputDescriptor, ProcessLog, ProcessResult

_logger = get_logger("tools")

FILTER_LABELS = {
    "grayscale": "Grayscale",
    "sepia": "Sepia",
    "invert": "Invert",
    "vintage": "Vintage",
    "vivid": "Vivid",
}

TRANSFORM_LABELS = {
    "flip-h": "Flip horizontal",
    "flip-v": "Flip vertical",
    "rotate-90": "Rotate 90°",
    "rotate-180": "Rotate 180°",
    "rotate-270": "Rotate 270°",
}


def output_ext(path: str | Path) -> str:
    return ".gif" if Path(path).suffix.lower() == ".gif" else ".png"


async def _run(
    ops: ImageOps,
    input_path: str | Path,
    suffix: str,
    label: str,
    op: Callable[[Path, Path], Awaitable[OpResult]],
    temp_root: str | Path | None = None,
) -> ProcessResult:
    log = ProcessLog(_logger)
    src = abs_path(input_path)
    ext = output_ext(src)
    try:
        await check_engine(ops)
        await check_source(ops, src)
        log.info(f"{label}...")
        with TempArena(temp_root) as arena:
            work = arena.allocate(suffix.strip("_"), ext)
            res = await op(src, work)
            if not res:
                log.error(f"{label} failed")
                return ProcessResult(False, error=res.error or f"{label} failed", logs=log.entries)
            dest = promote(work, output_path(src, suffix, ext))
    except PicletError as e:
        log.error(str(e))
        return ProcessResult(False, error=str(e), logs=log.entries)
    except Exception as e:
        _logger.exception("%s crashed", label)
        log.error(f"{label} failed: {e}")
        return ProcessResult(False, error=str(e) or type(e).__name__, logs=log.entries)
    width, height = res.data
    log.success(f"{label} done")
    out = OutputDescriptor(dest, "file", 1, f"{dest.name} ({width}x{height})")
    return ProcessResult(True, [out], primary_output=dest, logs=log.entries)


async def apply_filter(
    ops: ImageOps, input_path: str | Path, name: str, temp_root: str | Path | None = None
) -> ProcessResult:
    if name not in FILTERS:
        raise InvalidRequestError(f"unknown filter: {name} (choose from {', '.join(FILTERS)})")
    return await _run(
        ops, input_path, f"_{name}", FILTER_LABELS[name], lambda s, d: ops.apply_filter(s, d, name), temp_root
    )


async def transform(
    ops: ImageOps, input_path: str | Path, name: str, temp_root: str | Path | None = None
) -> ProcessResult:
    if name not in TRANSFORMS:
        raise InvalidRequestError(f"unknown transform: {name} (choose from {', '.join(TRANSFORMS)})")
    suffix = "_" + name.replace("-", "")
    return await _run(
        ops, input_path, suffix, TRANSFORM_LABELS[name], lambda s, d: ops.transform(s, d, name), temp_root
    )


async def add_border(
    ops: ImageOps, input_path: str | Path, width: int, color: str, temp_root: str | Path | None = None
) -> ProcessResult:
    if width <= 0:
        raise InvalidRequestError("border width must be positive")
    return await _run(
        ops, input_path, "_border", "Add border", lambda s, d: ops.add_border(s, d, width, color), temp_root
    )


async def recolor(
    ops: ImageOps,
    input_path: str | Path,
    from_color: str,
    to_color: str,
    fuzz: float = 10,
    temp_root: str | Path | None = None,
) -> ProcessResult:
    if not 0 <= fuzz <= 100:
        raise InvalidRequestError("fuzz must be within 0..100")
    return await _run(
        ops,
        input_path,
        "_recolor",
        "Recolor",
        lambda s, d: ops.replace_color(s, d, from_color, to_color, fuzz),
        temp_root,
    )


async def extract_frames(ops: ImageOps, input_path: str | Path, temp_root: str | Path | None = None) -> ProcessResult:
    """Write every frame to ``{stem}_frames/``; a single-frame input has nothing to extract."""
    log = ProcessLog(_logger)
    src = abs_path(input_path)
    try:
        await check_engine(ops)
        await check_source(ops, src)
        count = await ops.frame_count(src)
        if not count:
            raise PicletError(count.error or "Failed to read frame count")
        if count.data <= 1:
            log.warn("Single-frame image, nothing to extract")
            return ProcessResult(True, logs=log.entries)
        dest_dir = output_dir(src, "_frames")
        log.info(f"Extracting {count.data} frames...")
        with TempArena(temp_root) as arena:
            staging = arena.allocate_dir("frames")
            res = await ops.extract_all_frames(src, staging)
            if not res:
                log.error("Frame extraction failed")
                return ProcessResult(False, error=res.error or "Frame extraction failed", logs=log.entries)
            frames = [promote(p, dest_dir / Path(p).name) for p in res.data]
    except PicletError as e:
        log.error(str(e))
        return ProcessResult(False, error=str(e), logs=log.entries)
    except Exception as e:
        _logger.exception("extract-frames crashed")
        log.error(f"Frame extraction failed: {e}")
        return ProcessResult(False, error=str(e) or type(e).__name__, logs=log.entries)
    log.success(f"{len(frames)} frames -> {dest_dir.name}/")
    out = OutputDescriptor(dest_dir, "dir", len(frames), f"{len(frames)} frames -> {dest_dir.name}/")
    return ProcessResult(True, [out], logs=log.entries)
