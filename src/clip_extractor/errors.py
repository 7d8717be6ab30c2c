"""Error taxonomy for the clip extraction engine."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any


class ClipEngineError(RuntimeError):
    """
    Base error for engine failures, with structured context for logs.
    """

    def __init__(self, message: str, *, ctx: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.ctx: dict[str, Any] = dict(ctx or {})

    def with_context(self, extra: Mapping[str, Any]) -> ClipEngineError:
        # Existing keys win
        for k, v in extra.items():
            self.ctx.setdefault(k, v)
        return self


class EngineLoadError(ClipEngineError):
    """The media runtime could not be initialized. The caller may retry load()."""


class NotLoadedError(ClipEngineError):
    """cut_video() was called before a successful load()."""


class InvalidRangeError(ClipEngineError, ValueError):
    """The requested time range is negative, inverted, empty or out of limits."""


class ClipCutError(ClipEngineError):
    """The transcode command failed."""
