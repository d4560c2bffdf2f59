"""ICO packaging with Pillow."""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

from PIL import Image

ICO_MAX_SIZE = 256


def pack_multi_resolution_icon(src: str | Path, dst: str | Path, sizes: Sequence[int]) -> list[int]:
    """Write one .ico holding ``sizes`` (each downscaled from ``src``).

    Returns the sizes actually stored; sizes above the ICO limit or above the
    source resolution are dropped.
    """
    with Image.open(src) as im:
        image = im.convert("RGBA")
    limit = min(ICO_MAX_SIZE, image.width, image.height)
    keep = sorted({int(s) for s in sizes if 0 < int(s) <= limit}, reverse=True)
    if not keep:
        raise ValueError(f"no usable icon size in {list(sizes)} for a {image.width}x{image.height} source")
    image.save(dst, format="ICO", sizes=[(s, s) for s in keep])
    return keep


def pack_icon_from_multiple_sources(srcs: Sequence[str | Path], dst: str | Path) -> list[tuple[int, int]]:
    """Write one .ico whose entries are the given pre-rendered images, unchanged."""
    images: list[Image.Image] = []
    for p in srcs:
        with Image.open(p) as im:
            images.append(im.convert("RGBA"))
    if not images:
        raise ValueError("no icon sources")
    images.sort(key=lambda i: i.width * i.height, reverse=True)
    base = images[0]
    sizes = [i.size for i in images]
    base.save(dst, format="ICO", sizes=sizes, append_images=images[1:])
    return sizes
