"""Output naming and temporary-file lifecycle.

Durable outputs are always derived from the *original* source path:
``{dir}/{stem}{suffix}[-{w}x{h}]{ext}``. Everything else lives in a
``TempArena``: a private directory removed as a whole on exit, whatever the
exit path.

``ArtifactChain`` threads the "current artifact" through a pipeline run. Only
one artifact is live at a time; advancing the chain deletes the superseded
artifact unless it is the caller's source file.

Keep this module free of Qt dependencies.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path

from .logger import get_logger

_logger = get_logger("paths")


def abs_path(path: str | Path) -> Path:
    """Return an absolute path without requiring that it exists."""
    p = Path(path).expanduser()
    try:
        return p.resolve(strict=False)
    except Exception:
        return p.absolute()


def output_path(
    base: str | Path,
    suffix: str,
    ext: str | None = None,
    dims: tuple[int, int] | None = None,
) -> Path:
    """Durable output path beside ``base``.

    >>> output_path("/img/cat.jpg", "_scaled", ".png", (400, 400)).name
    'cat_scaled-400x400.png'
    """
    p = Path(base)
    ext = p.suffix if ext is None else ext
    if ext and not ext.startswith("."):
        ext = f".{ext}"
    size = f"-{dims[0]}x{dims[1]}" if dims else ""
    return p.parent / f"{p.stem}{suffix}{size}{ext}"


def output_dir(base: str | Path, suffix: str) -> Path:
    """Durable output directory beside ``base`` (``{dir}/{stem}{suffix}``)."""
    p = Path(base)
    return p.parent / f"{p.stem}{suffix}"


def safe_file_name(name: object) -> str | None:
    """Last component of ``name`` (either separator style); ``None`` when nothing usable is left.

    >>> safe_file_name("../x.png")
    'x.png'
    """
    leaf = str(name or "").replace("\\", "/").rsplit("/", 1)[-1].strip()
    return None if leaf in ("", ".", "..") else leaf


def ensure_dir(path: str | Path) -> Path:
    d = Path(path)
    d.mkdir(parents=True, exist_ok=True)
    return d


def cleanup(*paths: str | Path | None) -> None:
    """Best-effort removal of files; missing files and OS errors are ignored."""
    for p in paths:
        if p is None:
            continue
        try:
            Path(p).unlink(missing_ok=True)
        except OSError as e:
            _logger.debug("cleanup failed for %s: %s", p, e)


def promote(src: str | Path, dest: str | Path) -> Path:
    """Move a finished artifact to its durable location.

    The file is first moved next to ``dest`` under a hidden name, then swapped
    in with ``os.replace`` so ``dest`` never holds a partial write.
    """
    src_p = Path(src)
    dest_p = Path(dest)
    ensure_dir(dest_p.parent)
    part = dest_p.with_name(f".{dest_p.name}.part")
    try:
        shutil.move(str(src_p), str(part))
        os.replace(part, dest_p)
    except Exception:
        cleanup(part)
        raise
    _logger.debug("promoted %s -> %s", src_p.name, dest_p)
    return dest_p


class TempArena:
    """Private scratch directory for one request.

    Usage:
        with TempArena() as arena:
            out = arena.allocate("scale")
            ...
        # directory and everything allocated in it is gone here
    """

    def __init__(self, root: str | Path | None = None, prefix: str = "piclet-") -> None:
        self._root = str(root) if root else None
        self._prefix = prefix
        self._counter = 0
        self.path: Path | None = None

    def __enter__(self) -> TempArena:
        self.open()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def open(self) -> Path:
        if self.path is None:
            self.path = Path(tempfile.mkdtemp(prefix=self._prefix, dir=self._root))
            _logger.debug("arena opened: %s", self.path)
        return self.path

    def allocate(self, tag: str, suffix: str = ".png") -> Path:
        """Return a fresh, unique path inside the arena (the file is not created)."""
        base = self.open()
        self._counter += 1
        return base / f"{self._counter:03d}-{tag}{suffix}"

    def allocate_dir(self, tag: str) -> Path:
        base = self.open()
        self._counter += 1
        d = base / f"{self._counter:03d}-{tag}"
        d.mkdir()
        return d

    def owns(self, path: str | Path) -> bool:
        if self.path is None:
            return False
        try:
            return Path(path).resolve().is_relative_to(self.path.resolve())
        except OSError:
            return False

    def close(self) -> None:
        if self.path is None:
            return
        shutil.rmtree(self.path, ignore_errors=True)
        _logger.debug("arena closed: %s", self.path)
        self.path = None


class ArtifactChain:
    """Tracks the single live working artifact of a pipeline run."""

    def __init__(self, arena: TempArena, source: str | Path) -> None:
        self._arena = arena
        self.source = Path(source)
        self.current = self.source

    @property
    def is_source(self) -> bool:
        return self.current == self.source

    def advance(self, new_path: str | Path) -> Path:
        """Make ``new_path`` the live artifact and delete the one it supersedes."""
        previous = self.current
        self.current = Path(new_path)
        if previous != self.source and previous != self.current and self._arena.owns(previous):
            cleanup(previous)
        return self.current

    def release(self) -> Path:
        """Hand the live artifact to the caller; the chain falls back to the source."""
        released = self.current
        self.current = self.source
        return released


def new_temp_file(suffix: str = ".gif", root: str | Path | None = None, prefix: str = "piclet-edit-") -> Path:
    """Reserve a temp file that outlives any arena (the caller owns and removes it)."""
    fd, name = tempfile.mkstemp(prefix=prefix, suffix=suffix, dir=str(root) if root else None)
    os.close(fd)
    return Path(name)


def write_temp_bytes(data: bytes, file_name: str, root: str | Path | None = None) -> Path:
    """Persist uploaded bytes to a uniquely named temp file keeping the upload's extension."""
    ext = Path(file_name).suffix or ".png"
    fd, name = tempfile.mkstemp(prefix="piclet-load-", suffix=ext, dir=str(root) if root else None)
    with os.fdopen(fd, "wb") as f:
        f.write(data)
    return Path(name)
