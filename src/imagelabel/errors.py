"""Error taxonomy. Each error names the stage of the run that failed."""

from __future__ import annotations


class ImageLabelError(Exception):
    """Base class for every error raised by imagelabel."""

    stage = "run"


class InputError(ImageLabelError):
    """A model, label, or image file is missing, unreadable, or too large."""

    stage = "input"


class ImageDecodeError(ImageLabelError):
    """The image bytes could not be decoded."""

    stage = "decode"


class EngineError(ImageLabelError):
    """The tensor engine is unavailable or misconfigured."""

    stage = "engine"


class GraphBuildError(EngineError):
    """A computation graph could not be built or loaded."""


class InferenceError(EngineError):
    """Running a graph failed."""


class NotEnoughClassesError(ImageLabelError):
    """Fewer scored labels exist than the number of results requested."""

    stage = "ranking"
