"""
Purpose: Smooths a remote actor's reported positions for display.
What it does:
- First position: jump straight to it.
- Later positions: fixed-duration linear interpolation from the currently
  displayed point to the new target, one value per display frame.
- A target arriving mid-flight cancels the running interpolation and starts
  a new one from the interpolated point (not from the old target).

State is only "last displayed position" and "active interpolation handle".
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from help_requests.models import LngLat
from realtime.scheduling import Handle, LoopScheduler

from .geo import bearing

logger = logging.getLogger(__name__)


def interpolate(start: LngLat, end: LngLat, progress: float) -> LngLat:
    progress = min(max(progress, 0.0), 1.0)
    return (
        start[0] + (end[0] - start[0]) * progress,
        start[1] + (end[1] - start[1]) * progress,
    )


class PositionAnimator:
    def __init__(
        self,
        *,
        duration: float = 0.8,
        frame_interval: float = 1 / 60,
        clock: Callable[[], float] = time.monotonic,
        scheduler=None,
        on_frame: Optional[Callable[[LngLat], None]] = None,
    ):
        if duration <= 0:
            raise ValueError("duration must be > 0")
        self.duration = duration
        self.frame_interval = frame_interval
        self.clock = clock
        self.scheduler = scheduler or LoopScheduler()
        self.on_frame = on_frame

        self.position: Optional[LngLat] = None
        self.heading: float = 0.0
        self._start: Optional[LngLat] = None
        self._target: Optional[LngLat] = None
        self._started_at: float = 0.0
        self._frame: Optional[Handle] = None

    @property
    def animating(self) -> bool:
        return self._target is not None

    @property
    def target(self) -> Optional[LngLat]:
        return self._target

    def set_target(self, coordinate: LngLat) -> Handle:
        """
        Starts moving the displayed position towards coordinate.
        Returns a handle that cancels the interpolation.
        """
        if self.position is None:
            self.cancel()
            self._show(coordinate)
            return Handle()

        start = self.frame() if self.animating else self.position
        self.cancel()
        self.heading = bearing(start, coordinate)
        self._start = start
        self._target = coordinate
        self._started_at = self.clock()
        self._schedule()
        return Handle(self.cancel)

    def progress(self) -> float:
        if not self.animating:
            return 1.0
        return min(max((self.clock() - self._started_at) / self.duration, 0.0), 1.0)

    def frame(self) -> Optional[LngLat]:
        """Computes and displays the position for the current time."""
        if not self.animating:
            return self.position
        progress = self.progress()
        self._show(interpolate(self._start, self._target, progress))
        if progress >= 1.0:
            self._finish()
        return self.position

    def cancel(self) -> None:
        """Stops the running interpolation, keeping the last displayed point."""
        if self._frame is not None:
            self._frame.cancel()
            self._frame = None
        self._start = None
        self._target = None

    def close(self) -> None:
        """Owning view torn down."""
        self.cancel()
        self.position = None

    def _finish(self) -> None:
        if self._frame is not None:
            self._frame.cancel()
            self._frame = None
        self._start = None
        self._target = None

    def _schedule(self) -> None:
        self._frame = self.scheduler.call_later(self.frame_interval, self._on_frame)

    def _on_frame(self) -> None:
        self._frame = None
        self.frame()
        if self.animating:
            self._schedule()

    def _show(self, coordinate: LngLat) -> None:
        self.position = coordinate
        if self.on_frame is not None:
            self.on_frame(coordinate)
