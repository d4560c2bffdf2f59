from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from piclet.errors import InvalidInputError
from piclet.pipeline.stages import PipelineRequest
from piclet.service import PicletTool
from tests.helpers.images import make_gif, make_png

pytest.importorskip("pyvips")

SCALE = {"tools": ["scale"], "scale": {"width": 40, "height": 30}}


@pytest.fixture
def photo(tmp_path: Path) -> Path:
    src_dir = tmp_path / "src"
    src_dir.mkdir()
    return make_png(src_dir / "photo.png", size=(80, 60), box=(10, 10, 70, 50))


@pytest.fixture
def tool() -> PicletTool:
    return PicletTool()


def test_open_and_process(tool: PicletTool, photo: Path) -> None:
    session = asyncio.run(tool.open_session(photo))

    result = asyncio.run(tool.run_process(session, PipelineRequest.from_payload(SCALE)))

    assert session.to_dict()["borderColor"] == "#ffffff"
    assert result.primary_output == photo.parent / "photo_scaled-40x30.png"


def test_open_missing_file_raises(tool: PicletTool, tmp_path: Path) -> None:
    with pytest.raises(InvalidInputError):
        asyncio.run(tool.open_session(tmp_path / "missing.png"))


def test_concurrent_request_is_refused(tool: PicletTool, photo: Path) -> None:
    session = asyncio.run(tool.open_session(photo))

    with session.begin_request():
        result = asyncio.run(tool.run_process(session, PipelineRequest.from_payload(SCALE)))
        preview = asyncio.run(tool.run_preview(session, PipelineRequest()))

    assert not result.success
    assert result.error == "Another request is still running"
    assert not preview.success
    assert [p.name for p in photo.parent.iterdir()] == ["photo.png"]


def test_closed_session_rejects_requests(tool: PicletTool, photo: Path) -> None:
    session = asyncio.run(tool.open_session(photo))
    tool.close_session(session)

    result = asyncio.run(tool.run_process(session, PipelineRequest.from_payload(SCALE)))

    assert result.error == "Session is closed"


def test_load_replacement_image(tool: PicletTool, photo: Path, tmp_path: Path) -> None:
    session = asyncio.run(tool.open_session(photo))
    logo = make_png(tmp_path / "logo.png", size=(50, 50), bg=(0, 0, 0, 255), box=None)

    info = asyncio.run(tool.load_replacement_image(session, logo.read_bytes(), "logo.png"))

    assert info["success"] is True
    assert info["fileName"] == "logo.png"
    assert info["borderColor"] == "#000000"
    assert (info["width"], info["height"]) == (50, 50)
    temp_input = session.current_input
    assert temp_input.exists()
    assert temp_input.parent != photo.parent

    result = asyncio.run(tool.run_process(session, PipelineRequest.from_payload(SCALE)))
    assert result.primary_output == photo.parent / "logo_scaled-40x30.png"

    tool.close_session(session)
    assert not temp_input.exists()
    assert photo.exists()


def test_load_replacement_rejects_garbage(tool: PicletTool, photo: Path) -> None:
    session = asyncio.run(tool.open_session(photo))

    info = asyncio.run(tool.load_replacement_image(session, b"definitely not an image", "x.png"))
    empty = asyncio.run(tool.load_replacement_image(session, b"", "x.png"))

    assert not info["success"]
    assert not empty["success"]
    assert session.current_input == photo
    assert session.width == 80


def test_animated_preview_uses_first_frame(tool: PicletTool, tmp_path: Path) -> None:
    gif = make_gif(tmp_path / "anim.gif", frames=3)
    session = asyncio.run(tool.open_session(gif))

    result = asyncio.run(tool.run_preview(session, PipelineRequest()))

    assert result.success
    assert (result.width, result.height) == (64, 48)
    assert session.animation_state == "previewing"


def test_preview_to_file(tool: PicletTool, photo: Path, tmp_path: Path) -> None:
    session = asyncio.run(tool.open_session(photo))
    out = tmp_path / "preview.png"

    result = asyncio.run(tool.preview_to_file(session, PipelineRequest(), out))

    assert result.success
    assert out.read_bytes().startswith(b"\x89PNG")
