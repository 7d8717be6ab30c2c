"""Local video clip extraction engine."""

from .core.engine import ClipExtractionEngine
from .errors import ClipCutError, ClipEngineError, EngineLoadError, InvalidRangeError, NotLoadedError
from .models import ClipResult, EngineState

__all__ = [
    "ClipExtractionEngine",
    "ClipResult",
    "EngineState",
    "ClipEngineError",
    "EngineLoadError",
    "NotLoadedError",
    "InvalidRangeError",
    "ClipCutError",
]
