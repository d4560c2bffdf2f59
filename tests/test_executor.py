from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from PIL import Image

from piclet.image_engine import ImageOps, OpResult
from piclet.pipeline.executor import PipelineExecutor
from piclet.pipeline.stages import PipelineRequest
from tests.helpers.images import make_png, read_rgba

pytest.importorskip("pyvips")


class FaultyOps(ImageOps):
    """Facade whose selected primitives fail on demand."""

    def __init__(self, *, fail: set[str] | None = None, fail_width: int | None = None) -> None:
        super().__init__(timeout=30)
        self.fail = fail or set()
        self.fail_width = fail_width

    async def check_engine(self) -> OpResult:
        if "check_engine" in self.fail:
            return OpResult.fail("check_engine failed: libvips not found")
        return await super().check_engine()

    async def resize_exact(self, src, dst, width, height) -> OpResult:
        if "resize_exact" in self.fail:
            return OpResult.fail("resize_exact failed: injected")
        return await super().resize_exact(src, dst, width, height)

    async def scale_with_padding(self, src, dst, width, height) -> OpResult:
        if width == self.fail_width:
            return OpResult.fail("scale_with_padding failed: injected")
        return await super().scale_with_padding(src, dst, width, height)

    async def trim(self, src, dst) -> OpResult:
        if "trim" in self.fail:
            return OpResult.fail("trim failed: injected")
        return await super().trim(src, dst)

    async def remove_background_edge_feather(self, src, dst, color, fuzz, strength) -> OpResult:
        if "edge_feather" in self.fail:
            return OpResult.fail("remove_background_edge_feather failed: injected")
        return await super().remove_background_edge_feather(src, dst, color, fuzz, strength)

    async def remove_background_border_flood(self, src, dst, color, fuzz) -> OpResult:
        if "border_flood" in self.fail:
            return OpResult.fail("remove_background_border_flood failed: injected")
        return await super().remove_background_border_flood(src, dst, color, fuzz)

    async def remove_background_global(self, src, dst, color, fuzz) -> OpResult:
        if "global" in self.fail:
            return OpResult.fail("remove_background_global failed: injected")
        return await super().remove_background_global(src, dst, color, fuzz)


@pytest.fixture
def photo(tmp_path: Path) -> Path:
    src_dir = tmp_path / "src"
    src_dir.mkdir()
    return make_png(src_dir / "photo.png")


@pytest.fixture
def scratch(tmp_path: Path) -> Path:
    d = tmp_path / "scratch"
    d.mkdir()
    return d


def _run(executor: PipelineExecutor, source: Path, payload: dict, **kwargs):
    request = PipelineRequest.from_payload(payload)
    return asyncio.run(executor.execute(source, request, background_color="#ffffff", **kwargs))


def test_removebg_then_scale_writes_one_sized_output(photo: Path, scratch: Path) -> None:
    executor = PipelineExecutor(ImageOps(), scratch)
    payload = {
        "tools": ["removebg", "scale"],
        "removebg": {"fuzz": 10, "trim": True},
        "scale": {"width": 400, "height": 0, "makeSquare": True},
    }

    result = _run(executor, photo, payload)

    expected = photo.parent / "photo_scaled-400x400.png"
    assert result.success, result.error
    assert result.primary_output == expected
    assert sorted(p.name for p in photo.parent.iterdir()) == ["photo.png", "photo_scaled-400x400.png"]
    arr = read_rgba(expected)
    assert arr[0, 0, 3] == 0
    assert arr[200, 200, 3] == 255
    assert list(scratch.iterdir()) == []
    assert any(e.message == "Saved photo_scaled-400x400.png" for e in result.logs)


def test_stages_run_in_fixed_order(photo: Path, scratch: Path) -> None:
    executor = PipelineExecutor(ImageOps(), scratch)
    payload = {
        "tools": ["scale", "removebg"],
        "removebg": {"fuzz": 10, "trim": False},
        "scale": {"width": 100, "height": 100},
    }

    result = _run(executor, photo, payload)

    out = photo.parent / "photo_scaled-100x100.png"
    assert result.success, result.error
    assert result.primary_output == out
    # background removal ran before the resize
    assert read_rgba(out)[0, 0, 3] == 0
    stages = [e.stage for e in result.logs if e.stage]
    assert stages.index("removebg") < stages.index("scale")


def test_removebg_alone_uses_nobg_suffix(photo: Path, scratch: Path) -> None:
    executor = PipelineExecutor(ImageOps(), scratch)

    result = _run(executor, photo, {"tools": ["removebg"], "removebg": {"fuzz": 10, "trim": True}})

    assert result.success
    assert result.primary_output == photo.parent / "photo_nobg-600x300.png"


def test_removebg_without_background_color_fails(photo: Path, scratch: Path) -> None:
    executor = PipelineExecutor(ImageOps(), scratch)
    request = PipelineRequest.from_payload({"tools": ["removebg"], "removebg": {}})

    result = asyncio.run(executor.execute(photo, request, background_color=None))

    assert not result.success
    assert result.error.startswith("Remove background failed")


def test_icons_without_format_fails_and_writes_nothing(photo: Path, scratch: Path) -> None:
    executor = PipelineExecutor(ImageOps(), scratch)

    result = _run(executor, photo, {"tools": ["icons"], "icons": {"ico": False, "web": False}})

    assert not result.success
    assert result.error == "Icons failed: No output format selected"
    assert [p.name for p in photo.parent.iterdir()] == ["photo.png"]
    assert result.logs[-1].level == "error"
    assert result.logs[-1].stage == "icons"


def test_icons_ico_and_web_pack(photo: Path, scratch: Path) -> None:
    executor = PipelineExecutor(ImageOps(), scratch)

    result = _run(executor, photo, {"tools": ["icons"], "icons": {"ico": True, "web": True}})

    assert result.success, result.error
    ico = photo.parent / "photo.ico"
    web = photo.parent / "photo_icons" / "web"
    assert ico.exists()
    with Image.open(ico) as im:
        assert (256, 256) in im.info["sizes"]
        assert (16, 16) in im.info["sizes"]
    assert (web / "favicon.ico").exists()
    with Image.open(web / "apple-touch-icon.png") as im:
        assert im.size == (180, 180)
    assert len(list(web.iterdir())) == 8
    assert result.primary_output is None
    assert any("Generated 9 total icons" in e.message for e in result.logs)
    assert list(scratch.iterdir()) == []


def test_storepack_partial_failure_still_succeeds(photo: Path, scratch: Path) -> None:
    executor = PipelineExecutor(FaultyOps(fail_width=64), scratch)
    payload = {
        "tools": ["storepack"],
        "storepack": {
            "dimensions": [{"width": 32, "height": 32}, {"width": 64, "height": 64}, {"width": 128, "height": 128}],
            "scaleMode": "fit",
        },
    }

    result = _run(executor, photo, payload)

    assert result.success
    pack = photo.parent / "photo_assets"
    assert sorted(p.name for p in pack.iterdir()) == ["128x128.png", "32x32.png"]
    assert any(e.level == "warn" and "64x64.png" in e.message for e in result.logs)
    assert any(e.message == "Generated 2/3 images" for e in result.logs)


def test_storepack_all_succeed_with_named_files(photo: Path, scratch: Path) -> None:
    executor = PipelineExecutor(ImageOps(), scratch)
    payload = {
        "tools": ["storepack"],
        "storepack": {
            "dimensions": [
                {"width": 460, "height": 215, "filename": "header.png"},
                {"width": 32, "height": 32},
                {"width": 64, "height": 64},
            ],
            "scaleMode": "fill",
            "presetName": "steam",
        },
    }

    result = _run(executor, photo, payload)

    assert result.success
    pack = photo.parent / "photo_steam"
    assert sorted(p.name for p in pack.iterdir()) == ["32x32.png", "64x64.png", "header.png"]
    with Image.open(pack / "header.png") as im:
        assert im.size == (460, 215)


def test_storepack_file_name_cannot_leave_the_pack_folder(photo: Path, scratch: Path) -> None:
    executor = PipelineExecutor(ImageOps(), scratch)
    payload = {
        "tools": ["storepack"],
        "storepack": {"dimensions": [{"width": 32, "height": 32, "filename": "../x.png"}]},
    }

    result = _run(executor, photo, payload)

    assert result.success, result.error
    assert (photo.parent / "photo_assets" / "x.png").exists()
    assert not (photo.parent.parent / "x.png").exists()
    assert not (photo.parent / "x.png").exists()


def test_storepack_with_no_dimensions_fails(photo: Path, scratch: Path) -> None:
    executor = PipelineExecutor(ImageOps(), scratch)

    result = _run(executor, photo, {"tools": ["storepack"], "storepack": {"dimensions": []}})

    assert not result.success
    assert "No dimensions specified" in result.error


ALL_REMOVERS = {
    "tools": ["removebg"],
    "removebg": {"fuzz": 10, "trim": True, "edgeDetect": True, "preserveInner": True},
}


def _removebg_logs(result) -> list[tuple[str, str]]:
    return [(e.level, e.message) for e in result.logs if e.stage == "removebg" and e.level != "info"]


def test_removebg_falls_back_to_global(photo: Path, scratch: Path) -> None:
    executor = PipelineExecutor(FaultyOps(fail={"edge_feather", "border_flood"}), scratch)

    result = _run(executor, photo, ALL_REMOVERS)

    assert result.success, result.error
    assert result.primary_output == photo.parent / "photo_nobg-600x300.png"
    assert _removebg_logs(result)[:3] == [
        ("warn", "Edge feather removal failed"),
        ("warn", "Border flood removal failed"),
        ("success", "Background removed (global)"),
    ]
    assert list(scratch.iterdir()) == []


def test_removebg_stops_at_first_working_strategy(photo: Path, scratch: Path) -> None:
    executor = PipelineExecutor(FaultyOps(fail={"edge_feather"}), scratch)

    result = _run(executor, photo, ALL_REMOVERS)

    assert result.success, result.error
    logs = _removebg_logs(result)
    assert ("warn", "Edge feather removal failed") in logs
    assert ("success", "Background removed (border flood)") in logs
    assert not any("Border flood removal failed" in m for _, m in logs)


def test_removebg_fails_only_when_every_strategy_fails(photo: Path, scratch: Path) -> None:
    executor = PipelineExecutor(FaultyOps(fail={"edge_feather", "border_flood", "global"}), scratch)

    result = _run(executor, photo, ALL_REMOVERS)

    assert not result.success
    assert result.error == "Remove background failed: Background removal failed"
    assert [m for lvl, m in _removebg_logs(result) if lvl == "warn"] == [
        "Edge feather removal failed",
        "Border flood removal failed",
        "Global removal failed",
    ]
    assert list(scratch.iterdir()) == []
    assert [p.name for p in photo.parent.iterdir()] == ["photo.png"]


def test_removebg_trim_failure_keeps_untrimmed_result(photo: Path, scratch: Path) -> None:
    executor = PipelineExecutor(FaultyOps(fail={"trim"}), scratch)

    result = _run(executor, photo, {"tools": ["removebg"], "removebg": {"fuzz": 10, "trim": True}})

    assert result.success, result.error
    assert result.primary_output == photo.parent / "photo_nobg-800x600.png"
    assert ("warn", "Trim failed, keeping untrimmed result") in _removebg_logs(result)


def test_failure_mid_pipeline_cleans_temps_and_keeps_source(photo: Path, scratch: Path) -> None:
    before = photo.read_bytes()
    executor = PipelineExecutor(FaultyOps(fail={"resize_exact"}), scratch)
    payload = {
        "tools": ["removebg", "scale", "storepack"],
        "removebg": {"fuzz": 10, "trim": True},
        "scale": {"width": 100, "height": 100},
        "storepack": {"dimensions": [{"width": 32, "height": 32}]},
    }

    result = _run(executor, photo, payload)

    assert not result.success
    assert result.error.startswith("Scale failed")
    assert not any(e.stage == "storepack" for e in result.logs)
    assert list(scratch.iterdir()) == []
    assert [p.name for p in photo.parent.iterdir()] == ["photo.png"]
    assert photo.read_bytes() == before


def test_missing_engine_is_reported(photo: Path, scratch: Path) -> None:
    executor = PipelineExecutor(FaultyOps(fail={"check_engine"}), scratch)

    result = _run(executor, photo, {"tools": ["scale"], "scale": {"width": 10}})

    assert not result.success
    assert "Image engine not available" in result.error


def test_missing_and_unreadable_input(tmp_path: Path, scratch: Path) -> None:
    executor = PipelineExecutor(ImageOps(), scratch)
    junk = tmp_path / "notes.png"
    junk.write_text("not an image")

    missing = _run(executor, tmp_path / "nope.png", {"tools": ["scale"], "scale": {"width": 10}})
    unreadable = _run(executor, junk, {"tools": ["scale"], "scale": {"width": 10}})

    assert "File not found" in missing.error
    assert "Failed to read image dimensions" in unreadable.error


def test_empty_request_is_rejected(photo: Path, scratch: Path) -> None:
    executor = PipelineExecutor(ImageOps(), scratch)

    result = asyncio.run(executor.execute(photo, PipelineRequest()))

    assert not result.success
    assert result.error == "No tools selected"


def test_closed_session_skips_remaining_stages(photo: Path, scratch: Path) -> None:
    executor = PipelineExecutor(ImageOps(), scratch)
    request = PipelineRequest.from_payload({"tools": ["scale"], "scale": {"width": 10}})

    result = asyncio.run(executor.execute(photo, request, should_continue=lambda: False))

    assert not result.success
    assert result.error == "Cancelled"
    assert [p.name for p in photo.parent.iterdir()] == ["photo.png"]


def test_result_dict_shape(photo: Path, scratch: Path) -> None:
    executor = PipelineExecutor(ImageOps(), scratch)

    result = _run(executor, photo, {"tools": ["scale"], "scale": {"width": 80, "height": 60}})
    d = result.to_dict()

    assert d["success"] is True
    assert d["primaryOutput"].endswith("photo_scaled-80x60.png")
    assert d["output"] == "photo_scaled-80x60.png"
    assert {"type", "message"} <= set(d["logs"][0])
