"""Exception types shared by the pipeline, the animation controller and the tools.

Facade calls never raise these; they report failure through ``OpResult``. The
exceptions are raised inside the core and converted into result objects at the
public boundary.
"""

from __future__ import annotations


class PicletError(Exception):
    """Base class for all PicLet errors."""


class MissingDependencyError(PicletError):
    """The raster engine could not be loaded."""


class InvalidInputError(PicletError):
    """The source file is missing or not a readable image."""


class InvalidRequestError(PicletError):
    """A request payload failed validation."""


class StageError(PicletError):
    def __init__(self, stage: object, message: str) -> None:
        super().__init__(message)
        self.stage = stage
        self.message = message


class FrameEditError(PicletError):
    """A frame-level edit could not be applied."""


class SessionBusyError(PicletError):
    """Another request is still running for this session."""


class PresetError(PicletError):
    pass
