from __future__ import annotations

from pathlib import Path

import pytest
from PIL import Image

from piclet.image_engine import animation
from tests.helpers.images import frame_colors, gif_info, make_color_gif, make_gif, make_png, read_rgba


@pytest.fixture
def gif(tmp_path: Path) -> Path:
    return make_gif(tmp_path / "anim.gif", frames=10, delay_ms=100)


def test_frame_queries(gif: Path, tmp_path: Path) -> None:
    still = make_png(tmp_path / "still.png", size=(10, 10), box=None)

    assert animation.frame_count(gif) == 10
    assert animation.is_animated(gif)
    assert animation.is_multi_frame_format(gif)
    assert not animation.is_animated(still)
    assert not animation.is_multi_frame_format(still)
    assert not animation.is_animated(tmp_path / "missing.gif")


def test_delay_units() -> None:
    assert animation.ms_to_cs(100) == 10
    assert animation.ms_to_cs(0) == 1
    assert animation.cs_to_ms(5) == 50


def test_frame_delay_is_in_centiseconds(gif: Path) -> None:
    assert animation.frame_delay(gif) == 10


def test_simplify_halves_frames_and_doubles_delay(gif: Path, tmp_path: Path) -> None:
    out = tmp_path / "simple.gif"

    count, delay = animation.simplify_frames(gif, out, 2)

    assert (count, delay) == (5, 20)
    assert gif_info(out) == (5, 200)


def test_simplify_rejects_factor_below_two(gif: Path, tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        animation.simplify_frames(gif, tmp_path / "x.gif", 1)


def test_delete_frame(gif: Path, tmp_path: Path) -> None:
    out = tmp_path / "deleted.gif"

    assert animation.delete_frame(gif, out, 3) == 9
    assert animation.frame_count(gif) == 10


def test_delete_only_frame_is_rejected(tmp_path: Path) -> None:
    single = tmp_path / "single.gif"
    Image.new("RGB", (8, 8), (255, 0, 0)).save(single)

    with pytest.raises(ValueError):
        animation.delete_frame(single, tmp_path / "x.gif", 0)


def test_delete_out_of_range(gif: Path, tmp_path: Path) -> None:
    with pytest.raises(IndexError):
        animation.delete_frame(gif, tmp_path / "x.gif", 10)


def test_replace_frame_fits_replacement_on_canvas(gif: Path, tmp_path: Path) -> None:
    replacement = make_png(tmp_path / "blue.png", size=(32, 32), bg=(0, 0, 255, 255), box=None)
    out = tmp_path / "replaced.gif"
    frame = tmp_path / "frame0.png"

    assert animation.replace_frame(gif, out, 0, replacement) == 10
    assert animation.extract_frame(out, 0, frame) == (64, 48)

    r, g, b, a = (int(v) for v in read_rgba(frame)[24, 32])
    assert b > 200 and r < 50 and a == 255


def test_set_frame_delay_and_loop(gif: Path, tmp_path: Path) -> None:
    slowed = tmp_path / "slow.gif"
    looped = tmp_path / "loop.gif"

    animation.set_frame_delay(gif, slowed, 5)
    animation.set_loop_count(slowed, looped, 3)

    assert gif_info(slowed) == (10, 50)
    with Image.open(looped) as im:
        assert im.info.get("loop") == 3
    with pytest.raises(ValueError):
        animation.set_frame_delay(gif, tmp_path / "x.gif", 0)
    with pytest.raises(ValueError):
        animation.set_loop_count(gif, tmp_path / "x.gif", -1)


def test_extract_all_frames(gif: Path, tmp_path: Path) -> None:
    written = animation.extract_all_frames(gif, tmp_path / "frames")

    assert [p.name for p in written[:2]] == ["frame001.png", "frame002.png"]
    assert len(written) == 10
    assert all(p.exists() for p in written)


RED = (255, 0, 0)
GREEN = (0, 255, 0)
BLUE = (0, 0, 255)


def test_save_keeps_identical_neighbouring_frames(tmp_path: Path) -> None:
    frames = [Image.new("RGBA", (16, 16), c + (255,)) for c in (RED, RED, RED, BLUE)]
    anim = animation.Animation(frames=frames, durations=[100, 100, 200, 100], loop=2)
    out = tmp_path / "repeated.gif"

    assert animation.save_animation(anim, out) == 4
    assert frame_colors(out) == [RED, RED, RED, BLUE]
    loaded = animation.load_animation(out)
    assert loaded.durations == [100, 100, 200, 100]
    assert loaded.loop == 2


def test_replace_with_copy_of_neighbour_keeps_frame_count(tmp_path: Path) -> None:
    src = make_color_gif(tmp_path / "rgb.gif", [RED, GREEN, BLUE])
    red = make_png(tmp_path / "red.png", size=(16, 16), bg=RED + (255,), box=None)
    out = tmp_path / "replaced.gif"

    assert animation.replace_frame(src, out, 1, red) == 3
    assert frame_colors(out) == [RED, RED, BLUE]


def test_delete_between_identical_frames_removes_one(tmp_path: Path) -> None:
    src = make_color_gif(tmp_path / "rgr.gif", [RED, GREEN, RED])
    out = tmp_path / "deleted.gif"

    assert animation.delete_frame(src, out, 1) == 2
    assert frame_colors(out) == [RED, RED]
    assert animation.is_animated(out)


def test_transparent_frames_survive_rewrite(tmp_path: Path) -> None:
    clear = Image.new("RGBA", (16, 16), (0, 0, 0, 0))
    dot = clear.copy()
    dot.paste((255, 0, 0, 255), (4, 4, 12, 12))
    out = tmp_path / "alpha.gif"

    animation.save_animation(animation.Animation([dot, clear, clear], [100, 100, 100]), out)

    frames = animation.load_animation(out).frames
    assert len(frames) == 3
    assert frames[0].getpixel((8, 8))[3] == 255
    assert frames[1].getpixel((8, 8))[3] == 0
    assert frames[0].getpixel((0, 0))[3] == 0
