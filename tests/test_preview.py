from __future__ import annotations

import asyncio
import base64
import io
from pathlib import Path

import pytest
from PIL import Image

from piclet.image_engine import ImageOps, OpResult
from piclet.pipeline.preview import PreviewGenerator, encode_data_url
from piclet.pipeline.stages import PipelineRequest
from tests.helpers.images import make_png

pytest.importorskip("pyvips")


@pytest.fixture
def photo(tmp_path: Path) -> Path:
    src_dir = tmp_path / "src"
    src_dir.mkdir()
    return make_png(src_dir / "photo.png", size=(1600, 1200), box=(200, 300, 1400, 900))


def _decode(data_url: str) -> Image.Image:
    header, payload = data_url.split(",", 1)
    assert header == "data:image/png;base64"
    return Image.open(io.BytesIO(base64.b64decode(payload)))


def _preview(photo: Path, payload: dict, **kwargs):
    gen = PreviewGenerator(ImageOps(), **kwargs)
    return asyncio.run(gen.preview(photo, PipelineRequest.from_payload(payload), background_color="#ffffff"))


def test_preview_is_bounded_and_writes_nothing(photo: Path) -> None:
    result = _preview(photo, {"tools": ["removebg"], "removebg": {"fuzz": 10, "trim": True}})

    assert result.success, result.error
    assert max(result.width, result.height) <= 512
    assert (result.width, result.height) == (512, 256)
    with _decode(result.image_data) as im:
        assert im.size == (512, 256)
        assert im.mode == "RGBA"
    assert [p.name for p in photo.parent.iterdir()] == ["photo.png"]


def test_original_flag_ignores_stages(photo: Path) -> None:
    result = _preview(photo, {"original": True, "tools": ["scale"], "scale": {"width": 10, "height": 10}})

    assert result.success
    assert (result.width, result.height) == (512, 384)


def test_full_resolution_skips_downscale(photo: Path) -> None:
    result = _preview(photo, {"fullResolution": True, "tools": ["scale"], "scale": {"width": 1000, "height": 0}})

    assert result.success
    assert (result.width, result.height) == (1000, 750)


def test_icon_preview_shows_prepared_source_without_packs(photo: Path) -> None:
    result = _preview(photo, {"tools": ["icons"], "icons": {"ico": True, "web": True}})

    assert result.success
    assert result.width == result.height
    assert [p.name for p in photo.parent.iterdir()] == ["photo.png"]


def test_storepack_is_skipped_in_preview(photo: Path) -> None:
    result = _preview(photo, {"tools": ["storepack"], "storepack": {"dimensions": [{"width": 32, "height": 32}]}})

    assert result.success
    assert [p.name for p in photo.parent.iterdir()] == ["photo.png"]


def test_custom_max_size(photo: Path) -> None:
    result = _preview(photo, {}, max_size=100)

    assert (result.width, result.height) == (100, 75)


def test_icon_preview_before_any_format_is_picked(photo: Path) -> None:
    result = _preview(photo, {"tools": ["icons"], "icons": {}})

    assert result.success, result.error
    assert result.width == result.height


def test_storepack_without_dimensions_does_not_block_preview(photo: Path) -> None:
    payload = {"tools": ["scale", "storepack"], "scale": {"width": 400, "height": 300}, "storepack": {"dimensions": []}}

    result = _preview(photo, payload)

    assert result.success, result.error
    assert (result.width, result.height) == (400, 300)


class _ResizeFailsOps(ImageOps):
    async def resize_exact(self, src, dst, width, height) -> OpResult:
        return OpResult.fail("resize_exact failed: injected")


def test_preview_stage_failure_is_reported(photo: Path) -> None:
    gen = PreviewGenerator(_ResizeFailsOps())
    request = PipelineRequest.from_payload({"tools": ["scale"], "scale": {"width": 10, "height": 10}})

    result = asyncio.run(gen.preview(photo, request, background_color="#ffffff"))

    assert not result.success
    assert result.error == "Scale: Scale failed"
    assert result.to_dict() == {"success": False, "error": "Scale: Scale failed"}


def test_preview_of_missing_file(tmp_path: Path) -> None:
    gen = PreviewGenerator(ImageOps())

    result = asyncio.run(gen.preview(tmp_path / "gone.png", PipelineRequest()))

    assert not result.success
    assert "File not found" in result.error


def test_encode_data_url(tmp_path: Path) -> None:
    p = tmp_path / "x.png"
    p.write_bytes(b"\x89PNG")

    assert encode_data_url(p) == "data:image/png;base64,iVBORw=="
