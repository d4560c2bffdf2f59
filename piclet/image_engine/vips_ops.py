"""Raster primitives on top of pyvips.

Every primitive reads ``src`` and writes ``dst``; none of them touch any other
path. Geometry (resize, pad, crop, rotate) is done by libvips; colour masks
and bounding boxes are computed with numpy on ``write_to_memory`` buffers.

An animated ``src`` written to an animated container (``.gif``/``.webp``) is
processed frame by frame on coalesced frames. Any other combination works on
the first frame only.
"""

from __future__ import annotations

import contextlib
import math
import os
import shutil
import sys
from collections import Counter
from pathlib import Path
from typing import Any, Callable

import numpy as np
from PIL import Image, ImageColor

from piclet.image_engine import animation
from piclet.logger import get_logger

_logger = get_logger("vips")

RGBA_CHANNELS = 4
_MAX_RGB_DISTANCE = math.sqrt(3) * 255.0
_ANIMATED_SUFFIXES = {".gif", ".webp"}
_PIL_ONLY_SUFFIXES = {".gif", ".ico"}

# Locate bundled libvips (frozen exe/_MEIPASS)
_BASE_DIR = Path(getattr(sys, "_MEIPASS", Path(__file__).resolve().parent.parent))
_LIBVIPS_DIR = _BASE_DIR / "libvips"
if os.name == "nt" and _LIBVIPS_DIR.exists():
    with contextlib.suppress(Exception):
        os.add_dll_directory(str(_LIBVIPS_DIR))


_pyvips: Any | None = None


def _get_pyvips_module() -> Any:
    global _pyvips
    if _pyvips is None:
        import pyvips  # type: ignore

        _pyvips = pyvips
    return _pyvips


def engine_version() -> str:
    pyvips = _get_pyvips_module()
    return f"{pyvips.version(0)}.{pyvips.version(1)}.{pyvips.version(2)}"


# ---- conversions ------------------------------------------------------------


def _load(path: str | Path) -> Any:
    pyvips = _get_pyvips_module()
    try:
        return pyvips.Image.new_from_file(str(path))
    except pyvips.Error:
        # Formats libvips cannot read (e.g. .ico) go through Pillow
        with Image.open(path) as im:
            return _pil_to_vips(im.convert("RGBA"))


def _as_rgba(image: Any) -> Any:
    with contextlib.suppress(Exception):
        if image.interpretation != "srgb":
            image = image.colourspace("srgb")
    if image.format != "uchar":
        image = image.cast("uchar")
    if image.bands == 1:
        image = image.bandjoin([image, image]).bandjoin(255)
    elif image.bands == 2:
        grey = image[0]
        image = grey.bandjoin([grey, grey, image[1]])
    elif image.bands == 3:
        image = image.bandjoin(255)
    elif image.bands > RGBA_CHANNELS:
        image = image.extract_band(0, n=RGBA_CHANNELS)
    return image


def _to_array(image: Any) -> np.ndarray:
    rgba = _as_rgba(image)
    mem = rgba.write_to_memory()
    return np.frombuffer(mem, dtype=np.uint8).reshape(rgba.height, rgba.width, RGBA_CHANNELS).copy()


def _from_array(arr: np.ndarray) -> Any:
    pyvips = _get_pyvips_module()
    arr = np.ascontiguousarray(arr, dtype=np.uint8)
    height, width = arr.shape[0], arr.shape[1]
    bands = arr.shape[2] if arr.ndim == 3 else 1
    image = pyvips.Image.new_from_memory(arr.tobytes(), width, height, bands, "uchar")
    return image.copy(interpretation="srgb" if bands >= 3 else "b-w")


def _pil_to_vips(frame: Image.Image) -> Any:
    return _from_array(np.asarray(frame.convert("RGBA")))


def _vips_to_pil(image: Any) -> Image.Image:
    return Image.fromarray(_to_array(image), mode="RGBA")


def _save(image: Any, path: str | Path) -> None:
    p = Path(path)
    if p.suffix.lower() in _PIL_ONLY_SUFFIXES:
        _vips_to_pil(image).save(p)
        return
    image.write_to_file(str(p))


def _is_animated_target(src: str | Path, dst: str | Path) -> bool:
    return Path(dst).suffix.lower() in _ANIMATED_SUFFIXES and animation.is_animated(src)


def _copy_or_convert(src: str | Path, dst: str | Path) -> None:
    if Path(src).suffix.lower() == Path(dst).suffix.lower():
        if Path(src) != Path(dst):
            shutil.copyfile(src, dst)
        return
    _save(_load(src), dst)


def _apply(src: str | Path, dst: str | Path, transform: Callable[[Any], Any]) -> tuple[int, int]:
    """Run an image -> image ``transform`` and return the written size."""
    if _is_animated_target(src, dst):
        animation.map_frames(src, dst, lambda f: _vips_to_pil(transform(_pil_to_vips(f))))
        return dimensions(dst)
    out = transform(_load(src))
    _save(out, dst)
    return out.width, out.height


def _apply_array(src: str | Path, dst: str | Path, fn: Callable[[np.ndarray], np.ndarray]) -> tuple[int, int]:
    return _apply(src, dst, lambda im: _from_array(fn(_to_array(im))))


# ---- colours ----------------------------------------------------------------


def parse_color(color: str) -> tuple[int, int, int, int]:
    """Parse ``#rgb``, ``#rrggbb``, ``#rrggbbaa``, ``rgb(...)`` or a colour name."""
    try:
        r, g, b, a = ImageColor.getcolor(color.strip(), "RGBA")
    except (AttributeError, ValueError) as e:
        raise ValueError(f"unrecognised colour: {color!r}") from e
    return int(r), int(g), int(b), int(a)


def format_color(rgba: tuple[int, int, int, int] | np.ndarray) -> str:
    r, g, b, a = (int(v) for v in rgba)
    if a == 255:
        return f"#{r:02x}{g:02x}{b:02x}"
    return f"#{r:02x}{g:02x}{b:02x}{a:02x}"


def _color_mask(arr: np.ndarray, color: tuple[int, int, int, int], fuzz: float) -> np.ndarray:
    """Pixels within ``fuzz`` percent of ``color`` (RGB distance), ignoring already transparent ones."""
    rgb = arr[..., :3].astype(np.float32)
    target = np.asarray(color[:3], dtype=np.float32)
    dist = np.sqrt(((rgb - target) ** 2).sum(axis=2)) * (100.0 / _MAX_RGB_DISTANCE)
    return (dist <= float(fuzz)) & (arr[..., 3] > 0)


def _border_connected(mask: np.ndarray) -> np.ndarray:
    """Subset of ``mask`` connected to the image border."""
    height, width = mask.shape
    regions = _from_array(mask.astype(np.uint8) * 255).labelregions()
    labels = np.frombuffer(regions.write_to_memory(), dtype=np.int32).reshape(height, width)
    edge_labels = np.concatenate([labels[0], labels[-1], labels[:, 0], labels[:, -1]])
    edge_mask = np.concatenate([mask[0], mask[-1], mask[:, 0], mask[:, -1]])
    seeds = np.unique(edge_labels[edge_mask])
    if seeds.size == 0:
        return np.zeros_like(mask)
    return np.isin(labels, seeds) & mask


# ---- queries ----------------------------------------------------------------


def dimensions(path: str | Path) -> tuple[int, int]:
    pyvips = _get_pyvips_module()
    try:
        image = pyvips.Image.new_from_file(str(path), access="sequential")
        return int(image.width), int(image.height)
    except pyvips.Error:
        with Image.open(path) as im:
            return im.size


def dominant_corner_color(path: str | Path) -> str:
    """Most frequent of the four corner pixels; ties go to the top-left one."""
    arr = _to_array(_load(path))
    corners = [tuple(int(v) for v in arr[y, x]) for y, x in ((0, 0), (0, -1), (-1, 0), (-1, -1))]
    color, _count = Counter(corners).most_common(1)[0]
    return format_color(color)


def _content_box(arr: np.ndarray) -> tuple[int, int, int, int] | None:
    """Bounding box (left, top, width, height) of pixels differing from the top-left corner."""
    corner = arr[0, 0]
    if corner[3] == 0:
        mask = arr[..., 3] > 0
    else:
        mask = np.abs(arr.astype(np.int16) - corner.astype(np.int16)).max(axis=2) > 0
    if not mask.any():
        return None
    ys, xs = np.where(mask)
    top, bottom = int(ys.min()), int(ys.max())
    left, right = int(xs.min()), int(xs.max())
    return left, top, right - left + 1, bottom - top + 1


# ---- geometry ---------------------------------------------------------------


def _fit(image: Any, width: int, height: int) -> Any:
    return _as_rgba(image).thumbnail_image(int(width), height=int(height))


def _pad(image: Any, width: int, height: int) -> Any:
    return _as_rgba(image).gravity("centre", int(width), int(height), extend="background", background=[0, 0, 0, 0])


def trim(src: str | Path, dst: str | Path) -> tuple[int, int]:
    if _is_animated_target(src, dst):
        anim = animation.load_animation(src)
        boxes = [b for b in (_content_box(np.asarray(f)) for f in anim.frames) if b is not None]
        if boxes:
            left = min(b[0] for b in boxes)
            top = min(b[1] for b in boxes)
            right = max(b[0] + b[2] for b in boxes)
            bottom = max(b[1] + b[3] for b in boxes)
            anim.frames = [f.crop((left, top, right, bottom)) for f in anim.frames]
        animation.save_animation(anim, dst)
        return dimensions(dst)

    image = _load(src)
    box = _content_box(_to_array(image))
    if box is None or box == (0, 0, image.width, image.height):
        _copy_or_convert(src, dst)
        return image.width, image.height
    left, top, width, height = box
    _save(_as_rgba(image).crop(left, top, width, height), dst)
    return width, height


def squarify(src: str | Path, dst: str | Path) -> tuple[int, int]:
    width, height = dimensions(src)
    if width == height:
        _copy_or_convert(src, dst)
        return width, height
    size = max(width, height)
    return _apply(src, dst, lambda im: _pad(im, size, size))


def scale_to_square_size(src: str | Path, dst: str | Path, size: int) -> tuple[int, int]:
    return _apply(src, dst, lambda im: _pad(_fit(im, size, size), size, size))


def scale_with_padding(src: str | Path, dst: str | Path, width: int, height: int) -> tuple[int, int]:
    return _apply(src, dst, lambda im: _pad(_fit(im, width, height), width, height))


def resize_exact(src: str | Path, dst: str | Path, width: int, height: int) -> tuple[int, int]:
    return _apply(src, dst, lambda im: _as_rgba(im).thumbnail_image(int(width), height=int(height), size="force"))


def scale_fill_crop(src: str | Path, dst: str | Path, width: int, height: int) -> tuple[int, int]:
    return _apply(src, dst, lambda im: _as_rgba(im).thumbnail_image(int(width), height=int(height), crop="centre"))


def scale_to_fit(src: str | Path, dst: str | Path, max_size: int) -> tuple[int, int]:
    """Downscale so neither side exceeds ``max_size``; smaller images are copied as-is."""
    width, height = dimensions(src)
    if max(width, height) <= max_size:
        _copy_or_convert(src, dst)
        return width, height
    return _apply(src, dst, lambda im: _fit(im, max_size, max_size))


def convert(src: str | Path, dst: str | Path) -> tuple[int, int]:
    return _apply(src, dst, _as_rgba)


# ---- background removal -----------------------------------------------------


def remove_background_global(src: str | Path, dst: str | Path, color: str, fuzz: float) -> tuple[int, int]:
    rgba = parse_color(color)

    def _run(arr: np.ndarray) -> np.ndarray:
        arr[_color_mask(arr, rgba, fuzz), 3] = 0
        return arr

    return _apply_array(src, dst, _run)


def remove_background_border_flood(src: str | Path, dst: str | Path, color: str, fuzz: float) -> tuple[int, int]:
    rgba = parse_color(color)

    def _run(arr: np.ndarray) -> np.ndarray:
        candidates = _color_mask(arr, rgba, fuzz) | (arr[..., 3] == 0)
        arr[_border_connected(candidates), 3] = 0
        return arr

    return _apply_array(src, dst, _run)


def remove_background_edge_feather(
    src: str | Path, dst: str | Path, color: str, fuzz: float, strength: float
) -> tuple[int, int]:
    """Border flood-fill removal followed by a gaussian feather of the new alpha edge."""
    if strength <= 0:
        raise ValueError("edge strength must be positive")
    rgba = parse_color(color)

    def _run(arr: np.ndarray) -> np.ndarray:
        candidates = _color_mask(arr, rgba, fuzz) | (arr[..., 3] == 0)
        alpha = arr[..., 3].copy()
        alpha[_border_connected(candidates)] = 0
        blurred_img = _from_array(alpha).gaussblur(float(strength)).cast("uchar")
        blurred = np.frombuffer(blurred_img.write_to_memory(), dtype=np.uint8).reshape(alpha.shape)
        arr[..., 3] = np.minimum(alpha, blurred)
        return arr

    return _apply_array(src, dst, _run)


# ---- colour filters / transforms used by the one-shot tools -----------------

_SEPIA = np.array(
    [
        [0.393, 0.769, 0.189],
        [0.349, 0.686, 0.168],
        [0.272, 0.534, 0.131],
    ],
    dtype=np.float32,
)
_LUMA = np.array([0.299, 0.587, 0.114], dtype=np.float32)

FILTERS = ("grayscale", "sepia", "invert", "vintage", "vivid")
TRANSFORMS = ("flip-h", "flip-v", "rotate-90", "rotate-180", "rotate-270")


def _filter_rgb(rgb: np.ndarray, name: str) -> np.ndarray:
    if name == "grayscale":
        y = rgb @ _LUMA
        return np.repeat(y[..., None], 3, axis=2)
    if name == "sepia":
        return rgb @ _SEPIA.T
    if name == "invert":
        return 255.0 - rgb
    if name == "vintage":
        toned = 0.6 * (rgb @ _SEPIA.T) + 0.4 * rgb
        toned = (toned - 128.0) * 0.9 + 128.0
        return toned + np.array([10.0, 0.0, -10.0], dtype=np.float32)
    if name == "vivid":
        y = (rgb @ _LUMA)[..., None]
        saturated = y + (rgb - y) * 1.4
        return (saturated - 128.0) * 1.1 + 128.0
    raise ValueError(f"unknown filter: {name}")


def apply_filter(src: str | Path, dst: str | Path, name: str) -> tuple[int, int]:
    if name not in FILTERS:
        raise ValueError(f"unknown filter: {name}")

    def _run(arr: np.ndarray) -> np.ndarray:
        rgb = _filter_rgb(arr[..., :3].astype(np.float32), name)
        arr[..., :3] = np.clip(np.rint(rgb), 0, 255).astype(np.uint8)
        return arr

    return _apply_array(src, dst, _run)


def transform(src: str | Path, dst: str | Path, name: str) -> tuple[int, int]:
    ops: dict[str, Callable[[Any], Any]] = {
        "flip-h": lambda im: im.fliphor(),
        "flip-v": lambda im: im.flipver(),
        "rotate-90": lambda im: im.rot90(),
        "rotate-180": lambda im: im.rot180(),
        "rotate-270": lambda im: im.rot270(),
    }
    fn = ops.get(name)
    if fn is None:
        raise ValueError(f"unknown transform: {name}")
    return _apply(src, dst, lambda im: fn(_as_rgba(im)))


def add_border(src: str | Path, dst: str | Path, width: int, color: str) -> tuple[int, int]:
    if width <= 0:
        raise ValueError("border width must be positive")
    background = [float(v) for v in parse_color(color)]

    def _run(im: Any) -> Any:
        rgba = _as_rgba(im)
        return rgba.embed(
            width, width, rgba.width + 2 * width, rgba.height + 2 * width, extend="background", background=background
        )

    return _apply(src, dst, _run)


def replace_color(src: str | Path, dst: str | Path, from_color: str, to_color: str, fuzz: float) -> tuple[int, int]:
    source = parse_color(from_color)
    target = parse_color(to_color)

    def _run(arr: np.ndarray) -> np.ndarray:
        mask = _color_mask(arr, source, fuzz)
        arr[mask, :3] = target[:3]
        return arr

    return _apply_array(src, dst, _run)
