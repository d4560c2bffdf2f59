from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from PIL import Image

from piclet import tools
from piclet.errors import InvalidRequestError
from piclet.image_engine import ImageOps
from tests.helpers.images import make_gif, make_png, read_rgba

pytest.importorskip("pyvips")


@pytest.fixture
def photo(tmp_path: Path) -> Path:
    src_dir = tmp_path / "src"
    src_dir.mkdir()
    return make_png(src_dir / "photo.png", size=(80, 60), box=(10, 10, 70, 50))


def test_filter_writes_suffixed_output(photo: Path) -> None:
    result = asyncio.run(tools.apply_filter(ImageOps(), photo, "invert"))

    assert result.success
    assert result.primary_output == photo.parent / "photo_invert.png"
    assert tuple(read_rgba(result.primary_output)[0, 0, :3]) == (0, 0, 0)
    assert result.outputs[0].label == "photo_invert.png (80x60)"


def test_transform_naming(photo: Path) -> None:
    result = asyncio.run(tools.transform(ImageOps(), photo, "rotate-90"))

    assert result.primary_output == photo.parent / "photo_rotate90.png"
    with Image.open(result.primary_output) as im:
        assert im.size == (60, 80)


def test_border_and_recolor(photo: Path) -> None:
    border = asyncio.run(tools.add_border(ImageOps(), photo, 5, "#000000"))
    recolor = asyncio.run(tools.recolor(ImageOps(), photo, "#ffffff", "#00ff00", 5))

    with Image.open(border.primary_output) as im:
        assert im.size == (90, 70)
    assert recolor.primary_output == photo.parent / "photo_recolor.png"
    assert tuple(read_rgba(recolor.primary_output)[0, 0, :3]) == (0, 255, 0)


def test_gif_input_keeps_gif_output(tmp_path: Path) -> None:
    gif = make_gif(tmp_path / "anim.gif", frames=3)

    result = asyncio.run(tools.transform(ImageOps(), gif, "flip-v"))

    assert result.primary_output == tmp_path / "anim_flipv.gif"
    with Image.open(result.primary_output) as im:
        assert im.n_frames == 3


def test_argument_validation(photo: Path) -> None:
    with pytest.raises(InvalidRequestError):
        asyncio.run(tools.apply_filter(ImageOps(), photo, "blur"))
    with pytest.raises(InvalidRequestError):
        asyncio.run(tools.transform(ImageOps(), photo, "skew"))
    with pytest.raises(InvalidRequestError):
        asyncio.run(tools.add_border(ImageOps(), photo, 0, "#000"))
    with pytest.raises(InvalidRequestError):
        asyncio.run(tools.recolor(ImageOps(), photo, "#fff", "#000", 150))


def test_bad_colour_fails_without_output(photo: Path) -> None:
    result = asyncio.run(tools.add_border(ImageOps(), photo, 3, "not-a-colour"))

    assert not result.success
    assert [p.name for p in photo.parent.iterdir()] == ["photo.png"]


def test_extract_frames(tmp_path: Path, photo: Path) -> None:
    gif = make_gif(tmp_path / "anim.gif", frames=4)

    result = asyncio.run(tools.extract_frames(ImageOps(), gif))
    single = asyncio.run(tools.extract_frames(ImageOps(), photo))

    frames = sorted(p.name for p in (tmp_path / "anim_frames").iterdir())
    assert frames == ["frame001.png", "frame002.png", "frame003.png", "frame004.png"]
    assert result.outputs[0].count == 4
    assert single.success and not single.outputs
    assert single.logs[-1].level == "warn"
