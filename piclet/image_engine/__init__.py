"""Image Operations Facade.

- ``vips_ops``: pyvips/numpy raster primitives (sync)
- ``animation``: coalesced GIF/WebP frame IO (Pillow)
- ``icons``: ICO packaging (Pillow)
- ``ops``: async ``ImageOps`` wrapper returning ``OpResult``

Usage:
    from piclet.image_engine import ImageOps

    ops = ImageOps(timeout=30)
    res = await ops.dimensions("cat.png")
    if res:
        width, height = res.data
"""

from .ops import ImageOps, OpResult

__all__ = ["ImageOps", "OpResult"]
