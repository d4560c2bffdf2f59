"""Stage kinds, typed stage parameters and request parsing.

A request arrives as a loosely typed mapping (``tools`` plus one parameter
block per selected tool). ``PipelineRequest.from_payload`` validates it once
and produces frozen dataclasses; handlers never see missing fields.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Union

from piclet.errors import InvalidRequestError
from piclet.path_utils import safe_file_name


class StageKind(str, Enum):
    REMOVE_BACKGROUND = "removebg"
    SCALE = "scale"
    ICONS = "icons"
    STORE_PACK = "storepack"

    @property
    def order(self) -> int:
        return STAGE_ORDER.index(self)

    @property
    def label(self) -> str:
        return _LABELS[self]


STAGE_ORDER: tuple[StageKind, ...] = (
    StageKind.REMOVE_BACKGROUND,
    StageKind.SCALE,
    StageKind.ICONS,
    StageKind.STORE_PACK,
)

_LABELS = {
    StageKind.REMOVE_BACKGROUND: "Remove background",
    StageKind.SCALE: "Scale",
    StageKind.ICONS: "Icons",
    StageKind.STORE_PACK: "Store pack",
}


def describe_stage(stage: object) -> tuple[str, str]:
    """(log tag, display label) for a stage name; non-pipeline stages such as "frames" pass through."""
    try:
        kind = StageKind(stage)
    except ValueError:
        name = str(stage)
        return name, name.capitalize()
    return kind.value, kind.label


@dataclass(frozen=True)
class RemoveBackgroundParams:
    fuzz: int = 10
    trim: bool = True
    preserve_inner: bool = False
    edge_detect: bool = False
    edge_strength: float = 1.0


@dataclass(frozen=True)
class ScaleParams:
    """Target size; a 0 side is derived from the input's aspect ratio."""

    width: int
    height: int
    make_square: bool = False

    def resolve(self, src_width: int, src_height: int) -> tuple[int, int]:
        w, h = self.width, self.height
        if w <= 0 and h <= 0:
            raise InvalidRequestError("scale: width or height must be set")
        if w <= 0:
            w = max(1, round(src_width * h / max(1, src_height)))
        elif h <= 0:
            h = max(1, round(src_height * w / max(1, src_width)))
        if self.make_square:
            m = max(w, h)
            return m, m
        return w, h


@dataclass(frozen=True)
class IconParams:
    trim: bool = True
    make_square: bool = True
    ico: bool = False
    web: bool = False
    android: bool = False
    ios: bool = False

    @property
    def any_output(self) -> bool:
        return self.ico or self.any_pack

    @property
    def any_pack(self) -> bool:
        return self.web or self.android or self.ios


class ScaleMode(str, Enum):
    FIT = "fit"
    FILL = "fill"
    STRETCH = "stretch"


@dataclass(frozen=True)
class StoreDimension:
    width: int
    height: int
    filename: str | None = None

    @property
    def output_name(self) -> str:
        return self.filename or f"{self.width}x{self.height}.png"


@dataclass(frozen=True)
class StorePackParams:
    dimensions: tuple[StoreDimension, ...]
    scale_mode: ScaleMode = ScaleMode.FIT
    pack_name: str | None = None

    @property
    def folder_suffix(self) -> str:
        return f"_{self.pack_name or 'assets'}"


StageParams = Union[RemoveBackgroundParams, ScaleParams, IconParams, StorePackParams]

_PARAM_TYPES: dict[StageKind, type] = {
    StageKind.REMOVE_BACKGROUND: RemoveBackgroundParams,
    StageKind.SCALE: ScaleParams,
    StageKind.ICONS: IconParams,
    StageKind.STORE_PACK: StorePackParams,
}


@dataclass(frozen=True)
class PipelineRequest:
    stages: dict[StageKind, StageParams] = field(default_factory=dict)
    original: bool = False
    full_resolution: bool = False

    def __post_init__(self) -> None:
        for kind, params in self.stages.items():
            expected = _PARAM_TYPES[StageKind(kind)]
            if not isinstance(params, expected):
                raise InvalidRequestError(f"{kind.value}: expected {expected.__name__}, got {type(params).__name__}")

    @property
    def active_stages(self) -> list[StageKind]:
        """Selected stages in execution order, whatever order they were given in."""
        return [k for k in STAGE_ORDER if k in self.stages]

    @property
    def is_empty(self) -> bool:
        return not self.stages

    def params(self, kind: StageKind) -> Any:
        return self.stages[kind]

    def without(self, *kinds: StageKind) -> PipelineRequest:
        return PipelineRequest(
            stages={k: v for k, v in self.stages.items() if k not in kinds},
            original=self.original,
            full_resolution=self.full_resolution,
        )

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> PipelineRequest:
        """Build a request from a front-end payload (camelCase keys)."""
        payload = payload or {}
        if not isinstance(payload, Mapping):
            raise InvalidRequestError("request payload must be an object")
        tools = payload.get("tools") or []
        if isinstance(tools, str):
            tools = [t for t in tools.split(",") if t.strip()]
        stages: dict[StageKind, StageParams] = {}
        for raw in tools:
            try:
                kind = StageKind(str(raw).strip().lower())
            except ValueError:
                raise InvalidRequestError(f"unknown tool: {raw!r}") from None
            if kind in stages:
                continue
            block = payload.get(kind.value)
            if not isinstance(block, Mapping):
                raise InvalidRequestError(f"{kind.value}: missing parameters")
            stages[kind] = _PARSERS[kind](block)
        return cls(
            stages=stages,
            original=bool(payload.get("original", False)),
            full_resolution=bool(payload.get("fullResolution", False)),
        )


# ---- payload field helpers ----


def _int(
    block: Mapping[str, Any],
    key: str,
    stage: str,
    default: int | None = None,
    *,
    lo: int | None = None,
    hi: int | None = None,
) -> int:
    raw = block.get(key, default)
    if raw is None:
        raise InvalidRequestError(f"{stage}.{key}: required")
    if isinstance(raw, bool):
        raise InvalidRequestError(f"{stage}.{key}: expected a number")
    try:
        val = int(float(raw))
    except (TypeError, ValueError):
        raise InvalidRequestError(f"{stage}.{key}: expected a number, got {raw!r}") from None
    if lo is not None and val < lo:
        raise InvalidRequestError(f"{stage}.{key}: must be >= {lo}")
    if hi is not None and val > hi:
        raise InvalidRequestError(f"{stage}.{key}: must be <= {hi}")
    return val


def _float(block: Mapping[str, Any], key: str, stage: str, default: float) -> float:
    raw = block.get(key, default)
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise InvalidRequestError(f"{stage}.{key}: expected a number, got {raw!r}") from None


def _bool(block: Mapping[str, Any], key: str, default: bool = False) -> bool:
    raw = block.get(key, default)
    if isinstance(raw, str):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    return bool(raw)


def _parse_removebg(block: Mapping[str, Any]) -> RemoveBackgroundParams:
    stage = StageKind.REMOVE_BACKGROUND.value
    strength = _float(block, "edgeStrength", stage, 1.0)
    edge = _bool(block, "edgeDetect")
    if edge and strength <= 0:
        raise InvalidRequestError(f"{stage}.edgeStrength: must be > 0")
    return RemoveBackgroundParams(
        fuzz=_int(block, "fuzz", stage, 10, lo=0, hi=100),
        trim=_bool(block, "trim", True),
        preserve_inner=_bool(block, "preserveInner"),
        edge_detect=edge,
        edge_strength=strength,
    )


def _parse_scale(block: Mapping[str, Any]) -> ScaleParams:
    stage = StageKind.SCALE.value
    width = _int(block, "width", stage, 0, lo=0)
    height = _int(block, "height", stage, 0, lo=0)
    if width == 0 and height == 0:
        raise InvalidRequestError(f"{stage}: width or height must be set")
    return ScaleParams(width=width, height=height, make_square=_bool(block, "makeSquare"))


def _parse_icons(block: Mapping[str, Any]) -> IconParams:
    return IconParams(
        trim=_bool(block, "trim", True),
        make_square=_bool(block, "makeSquare", True),
        ico=_bool(block, "ico"),
        web=_bool(block, "web"),
        android=_bool(block, "android"),
        ios=_bool(block, "ios"),
    )


def _parse_storepack(block: Mapping[str, Any]) -> StorePackParams:
    stage = StageKind.STORE_PACK.value
    raw_dims = block.get("dimensions") or []
    if not isinstance(raw_dims, (list, tuple)):
        raise InvalidRequestError(f"{stage}.dimensions: expected a list")
    dims: list[StoreDimension] = []
    for i, d in enumerate(raw_dims):
        if not isinstance(d, Mapping):
            raise InvalidRequestError(f"{stage}.dimensions[{i}]: expected an object")
        name = safe_file_name(d.get("filename"))
        dims.append(
            StoreDimension(
                width=_int(d, "width", f"{stage}.dimensions[{i}]", lo=1),
                height=_int(d, "height", f"{stage}.dimensions[{i}]", lo=1),
                filename=name,
            )
        )
    try:
        mode = ScaleMode(str(block.get("scaleMode") or "fit").lower())
    except ValueError:
        raise InvalidRequestError(f"{stage}.scaleMode: expected fit, fill or stretch") from None
    pack = block.get("presetName") or block.get("packName") or None
    # An empty list is accepted here; the stage itself reports it as a failure.
    return StorePackParams(dimensions=tuple(dims), scale_mode=mode, pack_name=str(pack) if pack else None)


_PARSERS = {
    StageKind.REMOVE_BACKGROUND: _parse_removebg,
    StageKind.SCALE: _parse_scale,
    StageKind.ICONS: _parse_icons,
    StageKind.STORE_PACK: _parse_storepack,
}


# ---- icon manifests ----

ICO_LADDER: tuple[int, ...] = (256, 128, 64, 48, 32, 16)
FAVICON_SIZES: tuple[int, ...] = (16, 32, 48)
PACK_SOURCE_SIZE = 1024
ICO_SOURCE_SIZE = 512


@dataclass(frozen=True)
class PackEntry:
    path: str
    size: int


@dataclass(frozen=True)
class IconPack:
    name: str
    label: str
    entries: tuple[PackEntry, ...]
    favicon: bool = False


WEB_PACK = IconPack(
    name="web",
    label="Web",
    entries=(
        PackEntry("favicon-16x16.png", 16),
        PackEntry("favicon-32x32.png", 32),
        PackEntry("favicon-48x48.png", 48),
        PackEntry("apple-touch-icon.png", 180),
        PackEntry("android-chrome-192x192.png", 192),
        PackEntry("android-chrome-512x512.png", 512),
        PackEntry("mstile-150x150.png", 150),
    ),
    favicon=True,
)

ANDROID_PACK = IconPack(
    name="android",
    label="Android",
    entries=(
        PackEntry("mipmap-mdpi/ic_launcher.png", 48),
        PackEntry("mipmap-hdpi/ic_launcher.png", 72),
        PackEntry("mipmap-xhdpi/ic_launcher.png", 96),
        PackEntry("mipmap-xxhdpi/ic_launcher.png", 144),
        PackEntry("mipmap-xxxhdpi/ic_launcher.png", 192),
        PackEntry("playstore-icon.png", 512),
    ),
)

IOS_PACK = IconPack(
    name="ios",
    label="iOS",
    entries=tuple(
        PackEntry(f"AppIcon-{s}.png", s) for s in (20, 29, 40, 58, 60, 76, 80, 87, 120, 152, 167, 180, 1024)
    ),
)


def requested_packs(params: IconParams) -> list[IconPack]:
    packs = []
    if params.web:
        packs.append(WEB_PACK)
    if params.android:
        packs.append(ANDROID_PACK)
    if params.ios:
        packs.append(IOS_PACK)
    return packs


def icon_source_size(params: IconParams) -> int:
    return PACK_SOURCE_SIZE if params.any_pack else ICO_SOURCE_SIZE
