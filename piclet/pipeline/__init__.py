"""Multi-stage pipeline: stage definitions, executor, preview and animation control."""

from piclet.pipeline.animation import AnimationController, AnimationState, EditKind, ExportMode
from piclet.pipeline.executor import PipelineExecutor
from piclet.pipeline.preview import PreviewGenerator
from piclet.pipeline.results import FrameEditResult, LogEntry, OutputDescriptor, PreviewResult, ProcessResult
from piclet.pipeline.session import SessionState
from piclet.pipeline.stages import (
    IconParams,
    PipelineRequest,
    RemoveBackgroundParams,
    ScaleMode,
    ScaleParams,
    StageKind,
    StoreDimension,
    StorePackParams,
)

__all__ = [
    "AnimationController",
    "AnimationState",
    "EditKind",
    "ExportMode",
    "FrameEditResult",
    "IconParams",
    "LogEntry",
    "OutputDescriptor",
    "PipelineExecutor",
    "PipelineRequest",
    "PreviewGenerator",
    "PreviewResult",
    "ProcessResult",
    "RemoveBackgroundParams",
    "ScaleMode",
    "ScaleParams",
    "SessionState",
    "StageKind",
    "StoreDimension",
    "StorePackParams",
]
