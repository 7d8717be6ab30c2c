"""Fractional progress relay for load and transcode stages."""

from __future__ import annotations

import logging
import math
from typing import Callable

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


class ProgressReporter:
    """
    Relay completion fractions to an optional callback.

    Values are clamped into [0, 1], mapped into the reporter's [start, end]
    slice of the parent scale, and only emitted when they advance past the
    last value sent.
    Callback errors are logged and do not interrupt the operation.
    """

    def __init__(
        self,
        callback: ProgressCallback | None = None,
        *,
        start: float = 0.0,
        end: float = 1.0,
    ):
        self._callback = callback
        self._start = start
        self._end = end
        self._last: float | None = None

    @property
    def last(self) -> float | None:
        """Last value emitted on the parent scale, or None."""
        return self._last

    def __call__(self, fraction: float) -> None:
        if self._callback is None:
            return

        fraction = float(fraction)
        if math.isnan(fraction):
            return
        fraction = min(max(fraction, 0.0), 1.0)
        value = self._start + (self._end - self._start) * fraction

        if self._last is not None and value <= self._last:
            return
        self._last = value

        try:
            self._callback(value)
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}", exc_info=True)

    def complete(self) -> None:
        """Emit the end of this reporter's range."""
        self(1.0)

    def child(self, start: float, end: float) -> ProgressReporter:
        """Reporter for a sub-stage covering [start, end] of this reporter's range."""
        parent = self if self._callback is not None else None
        return ProgressReporter(parent, start=start, end=end)
