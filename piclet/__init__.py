"""PicLet: chained image processing (background removal, rescale, icons, store packs) with animated GIF editing."""

__version__ = "0.4.0"
