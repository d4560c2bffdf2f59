"""Synthetic test images."""

from __future__ import annotations

from pathlib import Path

import numpy as np
from PIL import Image

WHITE = (255, 255, 255, 255)
RED = (200, 30, 30, 255)


def make_png(
    path: Path,
    size: tuple[int, int] = (800, 600),
    bg: tuple[int, int, int, int] = WHITE,
    box: tuple[int, int, int, int] | None = (100, 150, 700, 450),
    box_color: tuple[int, int, int, int] = RED,
) -> Path:
    """Solid background with an optional filled rectangle (left, top, right, bottom exclusive)."""
    arr = np.zeros((size[1], size[0], 4), dtype=np.uint8)
    arr[...] = bg
    if box is not None:
        left, top, right, bottom = box
        arr[top:bottom, left:right] = box_color
    Image.fromarray(arr, mode="RGBA").save(path)
    return path


def make_gif(path: Path, frames: int = 10, size: tuple[int, int] = (64, 48), delay_ms: int = 100) -> Path:
    """Animated GIF whose frames all differ (a square moving across a white canvas)."""
    images = []
    step = max(1, (size[0] - 8) // max(1, frames))
    for i in range(frames):
        im = Image.new("RGB", size, (255, 255, 255))
        x = i * step
        im.paste((200, 30, 30), (x, 8, x + 8, 16))
        im.paste((i * 20 % 256, 80, 160), (0, size[1] - 4, size[0], size[1]))
        images.append(im)
    images[0].save(path, save_all=True, append_images=images[1:], duration=delay_ms, loop=0)
    return path


def read_rgba(path: Path) -> np.ndarray:
    with Image.open(path) as im:
        return np.asarray(im.convert("RGBA"))


def gif_info(path: Path) -> tuple[int, int]:
    """(frame count, first-frame duration in ms)"""
    with Image.open(path) as im:
        return int(getattr(im, "n_frames", 1)), int(im.info.get("duration") or 0)


def make_color_gif(
    path: Path, colors: list[tuple[int, int, int]], size: tuple[int, int] = (16, 16), delay_ms: int = 100
) -> Path:
    """One solid frame per colour; neighbouring colours must differ or Pillow folds them on save."""
    images = [Image.new("RGB", size, c) for c in colors]
    images[0].save(path, save_all=True, append_images=images[1:], duration=delay_ms, loop=0)
    return path


def frame_colors(path: Path) -> list[tuple[int, int, int]]:
    """Centre pixel of every frame, as RGB."""
    colors = []
    with Image.open(path) as im:
        for i in range(int(getattr(im, "n_frames", 1))):
            im.seek(i)
            frame = im.convert("RGB")
            colors.append(frame.getpixel((frame.width // 2, frame.height // 2)))
    return colors
