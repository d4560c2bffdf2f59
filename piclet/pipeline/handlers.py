"""Per-stage handlers shared by the executor and the preview generator.

A handler reads ``ctx.chain.current`` and either advances the chain to a new
working artifact or writes durable pack outputs. Fatal problems are raised as
``StageError``; partial pack failures are only logged and counted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable

from piclet.errors import StageError
from piclet.image_engine import ImageOps, OpResult
from piclet.logger import get_logger
from piclet.path_utils import ArtifactChain, TempArena, cleanup, output_dir, output_path, promote
from piclet.pipeline.results import OutputDescriptor, ProcessLog
from piclet.pipeline.stages import (
    FAVICON_SIZES,
    ICO_LADDER,
    IconPack,
    IconParams,
    RemoveBackgroundParams,
    ScaleMode,
    ScaleParams,
    StageKind,
    StorePackParams,
    icon_source_size,
    requested_packs,
)
from piclet.pipeline.strategies import Strategy, first_success

_logger = get_logger("stages")


@dataclass
class StageContext:
    ops: ImageOps
    arena: TempArena
    chain: ArtifactChain
    log: ProcessLog
    output_base: Path
    background_color: str | None = None
    preview: bool = False
    ext: str = ".png"
    outputs: list[OutputDescriptor] = field(default_factory=list)

    def allocate(self, tag: str, ext: str | None = None) -> Path:
        return self.arena.allocate(tag, ext or self.ext)


def _fail(kind: StageKind, message: str, res: OpResult | None = None) -> StageError:
    if res is not None and res.error:
        _logger.debug("%s: %s (%s)", kind.value, message, res.error)
    return StageError(kind, message)


# ---- removebg ----


async def remove_background(ctx: StageContext, params: RemoveBackgroundParams) -> None:
    kind = StageKind.REMOVE_BACKGROUND
    ctx.log.info("Removing background...", kind.value)
    color = ctx.background_color
    if not color:
        raise _fail(kind, "Background removal failed: no background color detected")

    src = ctx.chain.current
    out = ctx.allocate("nobg")
    strategies: list[Strategy] = []
    if params.edge_detect:
        strategies.append(
            Strategy(
                "edge feather",
                lambda: ctx.ops.remove_background_edge_feather(src, out, color, params.fuzz, params.edge_strength),
            )
        )
    if params.preserve_inner:
        strategies.append(
            Strategy("border flood", lambda: ctx.ops.remove_background_border_flood(src, out, color, params.fuzz))
        )
    strategies.append(Strategy("global", lambda: ctx.ops.remove_background_global(src, out, color, params.fuzz)))

    winner, attempts = await first_success(strategies)
    for attempt in attempts:
        if not attempt.result.ok:
            ctx.log.warn(f"{attempt.name.capitalize()} removal failed", kind.value)
    if winner is None:
        cleanup(out)
        raise _fail(kind, "Background removal failed", attempts[-1].result)
    ctx.chain.advance(out)
    ctx.log.success(f"Background removed ({winner.name})", kind.value)

    if params.trim:
        trimmed = ctx.allocate("trim")
        res = await ctx.ops.trim(out, trimmed)
        if res:
            ctx.chain.advance(trimmed)
            ctx.log.success("Trimmed", kind.value)
        else:
            cleanup(trimmed)
            ctx.log.warn("Trim failed, keeping untrimmed result", kind.value)


# ---- scale ----


async def scale(ctx: StageContext, params: ScaleParams) -> None:
    kind = StageKind.SCALE
    ctx.log.info("Scaling image...", kind.value)
    src = ctx.chain.current
    dims = await ctx.ops.dimensions(src)
    if not dims:
        raise _fail(kind, "Scale failed: unreadable dimensions", dims)
    width, height = params.resolve(*dims.data)

    out = ctx.allocate("scaled")
    if params.make_square:
        res = await ctx.ops.scale_with_padding(src, out, width, height)
    else:
        res = await ctx.ops.resize_exact(src, out, width, height)
    if not res:
        cleanup(out)
        raise _fail(kind, "Scale failed", res)
    ctx.chain.advance(out)
    w, h = res.data
    ctx.log.success(f"Scaled to {w}×{h}", kind.value)


# ---- icons ----


async def _prepare_icon_source(ctx: StageContext, params: IconParams, temps: list[Path]) -> Path:
    kind = StageKind.ICONS.value
    icon_src = ctx.chain.current
    if params.trim and ctx.chain.is_source:
        ctx.log.info("Trimming edges...", kind)
        trimmed = ctx.arena.allocate("ic-trim", ".png")
        temps.append(trimmed)
        if await ctx.ops.trim(icon_src, trimmed):
            icon_src = trimmed
            ctx.log.success("Trimmed", kind)
        else:
            ctx.log.warn("Trim failed, using untrimmed source", kind)
    if params.make_square:
        ctx.log.info("Making square...", kind)
        squared = ctx.arena.allocate("ic-sq", ".png")
        temps.append(squared)
        if await ctx.ops.squarify(icon_src, squared):
            icon_src = squared
            ctx.log.success("Made square", kind)
        else:
            ctx.log.warn("Squarify failed, using unpadded source", kind)
    return icon_src


async def _render_pack(ctx: StageContext, pack: IconPack, hires: Path, root: Path) -> tuple[int, int]:
    kind = StageKind.ICONS.value
    ctx.log.info(f"Generating {pack.label} icons...", kind)
    pack_dir = root / pack.name
    requested = len(pack.entries) + (1 if pack.favicon else 0)
    done = 0

    if pack.favicon:
        parts = []
        for size in FAVICON_SIZES:
            p = ctx.arena.allocate(f"fav{size}", ".png")
            if await ctx.ops.scale_to_square_size(hires, p, size):
                parts.append(p)
        ico = ctx.arena.allocate("favicon", ".ico")
        if len(parts) == len(FAVICON_SIZES) and await ctx.ops.pack_icon_from_multiple_sources(parts, ico):
            promote(ico, pack_dir / "favicon.ico")
            done += 1
        else:
            ctx.log.warn("favicon.ico failed", kind)
        cleanup(ico, *parts)

    for entry in pack.entries:
        tmp = ctx.arena.allocate(f"{pack.name}-{entry.size}", ".png")
        if await ctx.ops.scale_to_square_size(hires, tmp, entry.size):
            promote(tmp, pack_dir / entry.path)
            done += 1
        else:
            cleanup(tmp)
            ctx.log.warn(f"Failed: {pack.name}/{entry.path}", kind)

    level = ctx.log.success if done == requested else ctx.log.warn
    level(f"{pack.label}: {done}/{requested} icons", kind)
    return done, requested


async def icons(ctx: StageContext, params: IconParams) -> None:
    kind = StageKind.ICONS
    ctx.log.info("Generating icons...", kind.value)
    if not ctx.preview and not params.any_output:
        raise _fail(kind, "No output format selected")

    temps: list[Path] = []
    try:
        icon_src = await _prepare_icon_source(ctx, params, temps)
        if ctx.preview:
            # Preview only shows the prepared source
            if icon_src != ctx.chain.current:
                temps.remove(icon_src)
                ctx.chain.advance(icon_src)
            return

        hires = ctx.arena.allocate("ic-src", ".png")
        temps.append(hires)
        res = await ctx.ops.scale_to_square_size(icon_src, hires, icon_source_size(params))
        if not res:
            raise _fail(kind, "Failed to prepare icon source", res)

        total = 0
        requested = 0
        if params.ico:
            requested += 1
            ctx.log.info("Creating ICO file...", kind.value)
            tmp = ctx.arena.allocate("icon", ".ico")
            packed = await ctx.ops.pack_multi_resolution_icon(hires, tmp, ICO_LADDER)
            if packed:
                dest = promote(tmp, output_path(ctx.output_base, "", ".ico"))
                sizes = ", ".join(str(s) for s in packed.data)
                ctx.log.success(f"ICO: {len(packed.data)} sizes ({sizes})", kind.value)
                ctx.outputs.append(OutputDescriptor(dest, "file", 1))
                total += 1
            else:
                cleanup(tmp)
                ctx.log.warn("ICO creation failed", kind.value)

        packs = requested_packs(params)
        if packs:
            root = output_dir(ctx.output_base, "_icons")
            pack_total = 0
            for pack in packs:
                done, want = await _render_pack(ctx, pack, hires, root)
                pack_total += done
                requested += want
            if pack_total:
                ctx.outputs.append(OutputDescriptor(root, "dir", pack_total, f"{pack_total} icons → {root.name}/"))
            total += pack_total

        if total == 0:
            raise _fail(kind, "No icons generated")
        if total < requested:
            ctx.log.warn(f"Generated {total}/{requested} icons ({requested - total} failed)", kind.value)
        else:
            ctx.log.success(f"Generated {total} total icons", kind.value)
    finally:
        cleanup(*temps)


# ---- storepack ----


def _store_op(ctx: StageContext, mode: ScaleMode) -> Callable[[Path, Path, int, int], Awaitable[OpResult]]:
    if mode is ScaleMode.FILL:
        return ctx.ops.scale_fill_crop
    if mode is ScaleMode.STRETCH:
        return ctx.ops.resize_exact
    return ctx.ops.scale_with_padding


async def store_pack(ctx: StageContext, params: StorePackParams) -> None:
    kind = StageKind.STORE_PACK
    if ctx.preview:
        return
    if not params.dimensions:
        raise _fail(kind, "No dimensions specified")
    ctx.log.info("Generating store assets...", kind.value)

    src = ctx.chain.current
    dest_dir = output_dir(ctx.output_base, params.folder_suffix)
    op = _store_op(ctx, params.scale_mode)
    requested = len(params.dimensions)
    generated = 0
    for dim in params.dimensions:
        tmp = ctx.arena.allocate(f"store-{dim.width}x{dim.height}", ".png")
        res = await op(src, tmp, dim.width, dim.height)
        if res:
            promote(tmp, dest_dir / dim.output_name)
            generated += 1
        else:
            cleanup(tmp)
            ctx.log.warn(f"Failed: {dim.output_name}", kind.value)

    if generated == 0:
        raise _fail(kind, f"Generated 0/{requested} images")
    level = ctx.log.success if generated == requested else ctx.log.warn
    level(f"Generated {generated}/{requested} images", kind.value)
    ctx.outputs.append(
        OutputDescriptor(dest_dir, "dir", generated, f"{generated} images → {dest_dir.name}/")
    )


HANDLERS = {
    StageKind.REMOVE_BACKGROUND: remove_background,
    StageKind.SCALE: scale,
    StageKind.ICONS: icons,
    StageKind.STORE_PACK: store_pack,
}

# Stages whose working artifact becomes the durable output when they run last
DURABLE_SUFFIXES = {
    StageKind.REMOVE_BACKGROUND: "_nobg",
    StageKind.SCALE: "_scaled",
}
