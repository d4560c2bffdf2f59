"""Animated container IO using Pillow.

Frames are always handled coalesced: every frame is a full-canvas RGBA image,
so per-frame operations never see partial (delta) frames. GIFs are written one
frame at a time (Pillow encodes each frame, the container is assembled here) so
that identical neighbouring frames survive as separate frames.

Delays are stored in milliseconds (Pillow's unit) and exposed to callers in
centiseconds (the GIF unit).
"""

from __future__ import annotations

import io
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from PIL import Image, ImageOps, ImageSequence

from piclet.logger import get_logger

_logger = get_logger("animation")

ANIMATED_FORMATS = ("GIF", "WEBP")
DEFAULT_DURATION_MS = 100
_GIF_DISPOSE_BACKGROUND = 2
_GIF_EXTENSION = 0x21
_GIF_IMAGE = 0x2C
_GIF_CONTROL_LABEL = 0xF9
_GIF_TRAILER = b";"


@dataclass
class Animation:
    frames: list[Image.Image]
    durations: list[int]
    loop: int | None = 0

    def __len__(self) -> int:
        return len(self.frames)

    @property
    def size(self) -> tuple[int, int]:
        return self.frames[0].size if self.frames else (0, 0)


def ms_to_cs(ms: int) -> int:
    return max(1, int(round(ms / 10.0)))


def cs_to_ms(cs: int) -> int:
    return max(10, int(cs) * 10)


def frame_count(path: str | Path) -> int:
    with Image.open(path) as im:
        return int(getattr(im, "n_frames", 1))


def is_multi_frame_format(path: str | Path) -> bool:
    """True for containers that can hold several frames (GIF, WebP, APNG)."""
    with Image.open(path) as im:
        return im.format in ANIMATED_FORMATS or bool(getattr(im, "is_animated", False))


def is_animated(path: str | Path) -> bool:
    try:
        return frame_count(path) > 1
    except Exception:
        return False


def load_animation(path: str | Path) -> Animation:
    frames: list[Image.Image] = []
    durations: list[int] = []
    with Image.open(path) as im:
        loop = im.info.get("loop")
        for frame in ImageSequence.Iterator(im):
            frames.append(frame.convert("RGBA"))
            durations.append(int(frame.info.get("duration") or DEFAULT_DURATION_MS))
    if not frames:
        raise ValueError(f"no frames in {path}")
    return Animation(frames=frames, durations=durations, loop=loop)


def _skip_sub_blocks(data: bytes, pos: int) -> int:
    while pos < len(data):
        size = data[pos]
        pos += 1 + size
        if size == 0:
            return pos
    raise ValueError("truncated GIF data")


def _encode_gif_frame(frame: Image.Image, duration_ms: int) -> tuple[bytes, bytes]:
    """Encode one frame with Pillow; return (graphic control block, image block with a local colour table)."""
    buf = io.BytesIO()
    frame.save(buf, format="GIF", duration=int(duration_ms), disposal=_GIF_DISPOSE_BACKGROUND)
    data = buf.getvalue()
    if data[:6] not in (b"GIF87a", b"GIF89a"):
        raise ValueError("encoder did not produce GIF data")

    packed = data[10]
    pos = 13
    table = b""
    if packed & 0x80:
        table = data[pos : pos + 3 * (2 << (packed & 0x07))]
        pos += len(table)

    control = b""
    while pos < len(data) and data[pos] == _GIF_EXTENSION:
        end = _skip_sub_blocks(data, pos + 2)
        if data[pos + 1] == _GIF_CONTROL_LABEL:
            control = data[pos:end]
        pos = end
    if pos >= len(data) or data[pos] != _GIF_IMAGE:
        raise ValueError("encoded GIF frame has no image")

    flags = data[pos + 9]
    pixels = pos + 10 + (3 * (2 << (flags & 0x07)) if flags & 0x80 else 0)
    end = _skip_sub_blocks(data, pixels + 1)  # skip the LZW code size byte
    if flags & 0x80 or not table:
        return control, data[pos:end]
    local_flags = flags | 0x80 | (packed & 0x07)
    return control, data[pos : pos + 9] + bytes([local_flags]) + table + data[pos + 10 : end]


def _write_gif(anim: Animation, out: Path) -> None:
    width, height = anim.size
    parts = [b"GIF89a", struct.pack("<HHBBB", width, height, 0, 0, 0)]
    if anim.loop is not None:
        parts.append(b"!\xff\x0bNETSCAPE2.0\x03\x01" + struct.pack("<H", int(anim.loop)) + b"\x00")
    for frame, duration in zip(anim.frames, anim.durations):
        control, image = _encode_gif_frame(frame, duration)
        parts.append(control)
        parts.append(image)
    parts.append(_GIF_TRAILER)
    out.write_bytes(b"".join(parts))


def save_animation(anim: Animation, path: str | Path) -> int:
    """Write ``anim`` and return the frame count actually stored.

    GIF output keeps every frame. WebP and APNG go through Pillow's encoders,
    which fold identical consecutive frames into one, so the stored count
    there can be lower than ``len(anim)``.
    """
    if not anim.frames:
        raise ValueError("cannot write an animation without frames")
    out = Path(path)
    ext = out.suffix.lower()
    if ext == ".gif":
        _write_gif(anim, out)
        return frame_count(out)
    kwargs: dict = {
        "save_all": True,
        "append_images": anim.frames[1:],
        "duration": list(anim.durations),
    }
    if anim.loop is not None:
        kwargs["loop"] = int(anim.loop)
    anim.frames[0].save(out, format="WEBP" if ext == ".webp" else "PNG", **kwargs)
    return frame_count(out)


def map_frames(src: str | Path, dst: str | Path, fn: Callable[[Image.Image], Image.Image]) -> int:
    anim = load_animation(src)
    anim.frames = [fn(f) for f in anim.frames]
    return save_animation(anim, dst)


def _check_index(index: int, count: int) -> None:
    if index < 0 or index >= count:
        raise IndexError(f"frame index {index} out of range (0..{count - 1})")


def extract_frame(path: str | Path, index: int, out: str | Path) -> tuple[int, int]:
    with Image.open(path) as im:
        _check_index(index, int(getattr(im, "n_frames", 1)))
        im.seek(index)
        frame = im.convert("RGBA")
    frame.save(out, format="PNG")
    return frame.size


def extract_all_frames(path: str | Path, dest_dir: str | Path, prefix: str = "frame") -> list[Path]:
    dest = Path(dest_dir)
    dest.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []
    with Image.open(path) as im:
        for i, frame in enumerate(ImageSequence.Iterator(im)):
            p = dest / f"{prefix}{i + 1:03d}.png"
            frame.convert("RGBA").save(p, format="PNG")
            written.append(p)
    return written


def frame_delay(path: str | Path) -> int:
    """Delay of the first frame, in centiseconds."""
    with Image.open(path) as im:
        return ms_to_cs(int(im.info.get("duration") or DEFAULT_DURATION_MS))


def set_frame_delay(path: str | Path, out: str | Path, delay_cs: int) -> int:
    if delay_cs <= 0:
        raise ValueError("delay must be positive")
    anim = load_animation(path)
    anim.durations = [cs_to_ms(delay_cs)] * len(anim)
    return save_animation(anim, out)


def set_loop_count(path: str | Path, out: str | Path, loop: int) -> int:
    if loop < 0:
        raise ValueError("loop count must be >= 0 (0 loops forever)")
    anim = load_animation(path)
    anim.loop = int(loop)
    return save_animation(anim, out)


def simplify_frames(path: str | Path, out: str | Path, skip_factor: int) -> tuple[int, int]:
    """Keep every ``skip_factor``-th frame; each kept frame absorbs the delays it replaces.

    Returns (stored frame count, delay of the first kept frame in centiseconds).
    """
    if skip_factor < 2:
        raise ValueError("skip factor must be >= 2")
    anim = load_animation(path)
    kept_frames: list[Image.Image] = []
    kept_durations: list[int] = []
    for i in range(0, len(anim), skip_factor):
        kept_frames.append(anim.frames[i])
        kept_durations.append(sum(anim.durations[i : i + skip_factor]))
    anim.frames = kept_frames
    anim.durations = kept_durations
    count = save_animation(anim, out)
    return count, ms_to_cs(kept_durations[0])


def delete_frame(path: str | Path, out: str | Path, index: int) -> int:
    anim = load_animation(path)
    _check_index(index, len(anim))
    if len(anim) <= 1:
        raise ValueError("cannot delete the only frame")
    del anim.frames[index]
    del anim.durations[index]
    return save_animation(anim, out)


def replace_frame(path: str | Path, out: str | Path, index: int, image_path: str | Path) -> int:
    """Substitute frame ``index``; the replacement is fitted and centered on the canvas."""
    anim = load_animation(path)
    _check_index(index, len(anim))
    with Image.open(image_path) as im:
        replacement = im.convert("RGBA")
    if replacement.size != anim.size:
        fitted = ImageOps.contain(replacement, anim.size)
        canvas = Image.new("RGBA", anim.size, (0, 0, 0, 0))
        canvas.paste(fitted, ((anim.size[0] - fitted.width) // 2, (anim.size[1] - fitted.height) // 2))
        replacement = canvas
    anim.frames[index] = replacement
    _logger.debug("replaced frame %d of %d", index, len(anim))
    return save_animation(anim, out)
