import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any

from piclet import presets, tools
from piclet.errors import PicletError
from piclet.image_engine.vips_ops import FILTERS, TRANSFORMS
from piclet.logger import get_logger, setup_logger
from piclet.pipeline.animation import EditKind, ExportMode
from piclet.pipeline.results import FrameEditResult, PreviewResult, ProcessResult
from piclet.pipeline.stages import PipelineRequest, StageKind
from piclet.service import PicletTool
from piclet.settings_manager import SettingsManager

logger = get_logger("main")

_MARKERS = {"info": "[..]", "success": "[OK]", "warn": "[!]", "error": "[X]"}
_COLORS = {"success": "32", "warn": "33", "error": "31"}


def _apply_cli_logging_options(args: argparse.Namespace) -> None:
    # Reflect into env so every later get_logger() call picks them up
    if args.log_level:
        os.environ["PICLET_LOG_LEVEL"] = args.log_level
    if args.log_cats:
        os.environ["PICLET_LOG_CATS"] = args.log_cats
    setup_logger()


def _paint(text: str, level: str, stream: Any) -> str:
    code = _COLORS.get(level)
    if not code or not getattr(stream, "isatty", lambda: False)():
        return text
    return f"\033[{code}m{text}\033[0m"


def _print_result(result: ProcessResult | PreviewResult | FrameEditResult) -> int:
    for entry in getattr(result, "logs", []):
        stream = sys.stderr if entry.level == "error" else sys.stdout
        prefix = f"{entry.stage}: " if entry.stage else ""
        print(_paint(f"{_MARKERS.get(entry.level, '[..]')} {prefix}{entry.message}", entry.level, stream), file=stream)
    if not result.success:
        print(_paint(f"[X] {result.error or 'Failed'}", "error", sys.stderr), file=sys.stderr)
        return 1
    if isinstance(result, ProcessResult):
        for out in result.outputs:
            print(f"Output: {out.path}" + (f" ({out.count} files)" if out.kind == "dir" else ""))
    elif isinstance(result, FrameEditResult):
        print(f"Frames: {result.frame_count}" + (f", delay {result.frame_delay}cs" if result.frame_delay else ""))
    return 0


# ---- stage options ----------------------------------------------------------


def _add_stage_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("--tools", default="", help="Comma-separated stages: removebg,scale,icons,storepack")
    p.add_argument("--defaults", action="store_true", help="Fill unspecified background options from settings")
    rb = p.add_argument_group("removebg")
    rb.add_argument("--fuzz", type=int, help="Colour tolerance 0-100")
    rb.add_argument("--no-trim", dest="trim", action="store_false", default=None, help="Keep transparent margins")
    rb.add_argument("--preserve-inner", action="store_true", default=None, help="Only clear border-connected pixels")
    rb.add_argument("--edge-detect", action="store_true", help="Feather the cut-out edge")
    rb.add_argument("--edge-strength", type=float, help="Feather amount")
    sc = p.add_argument_group("scale")
    sc.add_argument("--width", type=int, default=0)
    sc.add_argument("--height", type=int, default=0)
    sc.add_argument("--square", action="store_true", help="Pad to max(width, height)")
    ic = p.add_argument_group("icons")
    ic.add_argument("--ico", action="store_true")
    ic.add_argument("--web", action="store_true")
    ic.add_argument("--android", action="store_true")
    ic.add_argument("--ios", action="store_true")
    ic.add_argument("--icon-no-trim", action="store_true")
    ic.add_argument("--icon-no-square", action="store_true")
    sp = p.add_argument_group("storepack")
    sp.add_argument("--preset", help="Preset id (see `piclet presets list`)")
    sp.add_argument("--size", action="append", default=[], metavar="WxH[:name]")
    sp.add_argument("--scale-mode", choices=["fit", "fill", "stretch"], default="fit")
    sp.add_argument("--pack-name")


def _parse_size(text: str) -> dict[str, Any]:
    dims, _, name = text.partition(":")
    w, _, h = dims.lower().partition("x")
    try:
        d: dict[str, Any] = {"width": int(w), "height": int(h)}
    except ValueError:
        raise argparse.ArgumentTypeError(f"bad size: {text!r} (expected WxH[:name])") from None
    if name:
        d["filename"] = name
    return d


def build_request(args: argparse.Namespace, settings: SettingsManager) -> PipelineRequest:
    """Turn CLI options into a validated request; defaults are made explicit here."""
    selected = [t.strip() for t in (args.tools or "").split(",") if t.strip()]
    payload: dict[str, Any] = {"tools": selected, "original": bool(getattr(args, "original", False))}

    def pick(value: Any, key: str, fallback: Any) -> Any:
        if value is not None:
            return value
        return settings.get(key) if args.defaults else fallback

    payload[StageKind.REMOVE_BACKGROUND.value] = {
        "fuzz": pick(args.fuzz, "removebg_fuzz", 10),
        "trim": pick(args.trim, "removebg_trim", True),
        "preserveInner": pick(args.preserve_inner, "removebg_preserve_inner", False),
        "edgeDetect": args.edge_detect,
        "edgeStrength": pick(args.edge_strength, "removebg_edge_strength", 1.0),
    }
    payload[StageKind.SCALE.value] = {"width": args.width, "height": args.height, "makeSquare": args.square}
    ico, web, android, ios = args.ico, args.web, args.android, args.ios
    if args.defaults and not (ico or web or android or ios):
        platforms = set(settings.get("icon_platforms") or [])
        web, android, ios = "web" in platforms, "android" in platforms, "ios" in platforms
    payload[StageKind.ICONS.value] = {
        "trim": not args.icon_no_trim,
        "makeSquare": not args.icon_no_square,
        "ico": ico,
        "web": web,
        "android": android,
        "ios": ios,
    }
    store: dict[str, Any] = {
        "dimensions": [_parse_size(s) for s in args.size],
        "scaleMode": args.scale_mode,
        "presetName": args.pack_name,
    }
    if args.preset:
        preset = presets.get_preset(args.preset, settings.presets_path)
        if preset is None:
            raise PicletError(f"Unknown preset: {args.preset}")
        store["dimensions"] = [i.to_dict() for i in preset.icons] + store["dimensions"]
        store["presetName"] = args.pack_name or preset.id
    payload[StageKind.STORE_PACK.value] = store
    return PipelineRequest.from_payload(payload)


# ---- commands ---------------------------------------------------------------


async def _cmd_process(tool: PicletTool, args: argparse.Namespace) -> int:
    request = build_request(args, tool.settings)
    session = await tool.open_session(args.file)
    try:
        return _print_result(await tool.run_process(session, request))
    finally:
        tool.close_session(session)


async def _cmd_preview(tool: PicletTool, args: argparse.Namespace) -> int:
    request = build_request(args, tool.settings)
    session = await tool.open_session(args.file)
    out = args.out or str(Path(args.file).with_name(f"{Path(args.file).stem}_preview.png"))
    try:
        result = await tool.preview_to_file(session, request, out)
    finally:
        tool.close_session(session)
    code = _print_result(result)
    if code == 0:
        print(f"Preview: {out} ({result.width}x{result.height})")
    return code


async def _cmd_gif(tool: PicletTool, args: argparse.Namespace) -> int:
    session = await tool.open_session(args.file)
    try:
        if args.action == "info":
            print(json.dumps(session.to_dict(), indent=2))
            return 0
        if args.action in ("delete", "simplify"):
            if args.value is None:
                raise PicletError(f"gif {args.action} needs a value")
            kind = EditKind.DELETE if args.action == "delete" else EditKind.SIMPLIFY
            params = {"index": args.value} if kind is EditKind.DELETE else {"skip": args.value}
            edited = await tool.run_frame_edit(session, kind, params)
            if _print_result(edited):
                return 1
            result = await tool.run_gif_export(session, ExportMode.REPROCESSED_GIF, delay=args.delay, loop=args.loop)
            return _print_result(result)
        if args.action == "extract":
            index = int(args.value or 0)
            return _print_result(await tool.run_gif_export(session, ExportMode.SINGLE_FRAME, frame_index=index))
        request = build_request(args, tool.settings)
        result = await tool.run_gif_export(
            session,
            args.mode or ExportMode.REPROCESSED_GIF,
            request,
            frame_index=args.frame,
            delay=args.delay,
            loop=args.loop,
        )
        return _print_result(result)
    finally:
        tool.close_session(session)


async def _cmd_filter(tool: PicletTool, args: argparse.Namespace) -> int:
    return _print_result(await tools.apply_filter(tool.ops, args.file, args.name, tool.temp_root))


async def _cmd_transform(tool: PicletTool, args: argparse.Namespace) -> int:
    return _print_result(await tools.transform(tool.ops, args.file, args.name, tool.temp_root))


async def _cmd_border(tool: PicletTool, args: argparse.Namespace) -> int:
    return _print_result(await tools.add_border(tool.ops, args.file, args.width, args.color, tool.temp_root))


async def _cmd_recolor(tool: PicletTool, args: argparse.Namespace) -> int:
    result = await tools.recolor(tool.ops, args.file, args.from_color, args.to_color, args.fuzz, tool.temp_root)
    return _print_result(result)


async def _cmd_extract_frames(tool: PicletTool, args: argparse.Namespace) -> int:
    return _print_result(await tools.extract_frames(tool.ops, args.file, tool.temp_root))


async def _cmd_presets(tool: PicletTool, args: argparse.Namespace) -> int:
    path = tool.settings.presets_path
    if args.action == "list":
        builtin = set(presets.builtin_preset_ids())
        for p in presets.load_presets(path):
            tag = "" if p.id in builtin else " (user)"
            print(f"{p.id:20s} {p.name}{tag} - {len(p.icons)} images")
        return 0
    if not args.id:
        raise PicletError(f"presets {args.action} needs an id")
    if args.action == "show":
        preset = presets.get_preset(args.id, path)
        if preset is None:
            raise PicletError(f"Unknown preset: {args.id}")
        print(json.dumps(preset.to_dict(), indent=2))
        return 0
    presets.delete_preset(args.id, path)
    print(f"[OK] Deleted preset {args.id}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="piclet", description="PicLet image toolkit")
    parser.add_argument("--log-level", help="debug|info|warning|error|critical")
    parser.add_argument("--log-cats", help="Comma-separated logger categories, e.g. executor,frames")
    parser.add_argument("--settings", help="Settings JSON path")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("process", help="Run the stage pipeline and write outputs beside FILE")
    p.add_argument("file")
    _add_stage_options(p)
    p.set_defaults(handler=_cmd_process)

    p = sub.add_parser("preview", help="Write a downscaled preview PNG")
    p.add_argument("file")
    p.add_argument("--out")
    p.add_argument("--original", action="store_true", help="Ignore stages, preview the input")
    _add_stage_options(p)
    p.set_defaults(handler=_cmd_preview)

    p = sub.add_parser("gif", help="Animated image operations")
    p.add_argument("file")
    p.add_argument("action", choices=["info", "extract", "delete", "simplify", "export"])
    p.add_argument("value", nargs="?", type=int, help="Frame index (extract/delete) or skip factor (simplify)")
    p.add_argument("--mode", choices=[m.value for m in ExportMode], help="Export mode")
    p.add_argument("--frame", type=int, default=0)
    p.add_argument("--delay", type=int, help="Frame delay in centiseconds")
    p.add_argument("--loop", type=int, help="Loop count (0 = forever)")
    _add_stage_options(p)
    p.set_defaults(handler=_cmd_gif)

    p = sub.add_parser("filter", help="Colour filter")
    p.add_argument("file")
    p.add_argument("name", choices=FILTERS)
    p.set_defaults(handler=_cmd_filter)

    p = sub.add_parser("transform", help="Flip or rotate")
    p.add_argument("file")
    p.add_argument("name", choices=TRANSFORMS)
    p.set_defaults(handler=_cmd_transform)

    p = sub.add_parser("border", help="Add a solid border")
    p.add_argument("file")
    p.add_argument("--width", type=int, default=10)
    p.add_argument("--color", default="#ffffff")
    p.set_defaults(handler=_cmd_border)

    p = sub.add_parser("recolor", help="Replace one colour with another")
    p.add_argument("file")
    p.add_argument("--from", dest="from_color", required=True)
    p.add_argument("--to", dest="to_color", required=True)
    p.add_argument("--fuzz", type=float, default=10)
    p.set_defaults(handler=_cmd_recolor)

    p = sub.add_parser("extract-frames", help="Write every frame as PNG")
    p.add_argument("file")
    p.set_defaults(handler=_cmd_extract_frames)

    p = sub.add_parser("presets", help="Store-pack presets")
    p.add_argument("action", choices=["list", "show", "delete"])
    p.add_argument("id", nargs="?")
    p.set_defaults(handler=_cmd_presets)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _apply_cli_logging_options(args)
    settings = SettingsManager(args.settings)
    tool = PicletTool(settings)
    try:
        return asyncio.run(args.handler(tool, args))
    except (PicletError, argparse.ArgumentTypeError) as e:
        logger.debug("command failed: %s", e)
        print(_paint(f"[X] {e}", "error", sys.stderr), file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
