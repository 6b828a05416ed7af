"""
Purpose: Cancellation tokens and timer primitives for the single event loop.
What it does:
- Handle: returned by every subscribe / animate / countdown call. Cancelling
  it releases whatever it guards. Cancelling twice is a no-op.
- HandleGroup: owns several handles so a component can release all of them
  on teardown (including error paths, via `with group:`).
- LoopScheduler: thin wrapper over asyncio's `loop.call_later`.
- Ticker: re-arming periodic callback built on any scheduler.

Rule: nothing here blocks the loop. Components receive a scheduler by
reference so tests can swap in a fake clock.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class Handle:
    """
    Cancellation token.

    Wraps a release callback; `cancel()` runs it at most once.
    """

    def __init__(self, release: Optional[Callable[[], None]] = None):
        self._release = release
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        release, self._release = self._release, None
        if release is not None:
            release()

    def __call__(self) -> None:
        self.cancel()

    def __enter__(self) -> Handle:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cancel()


class HandleGroup:
    """Collects handles and cancels them together."""

    def __init__(self):
        self._handles: List[Handle] = []

    def add(self, handle: Handle) -> Handle:
        self._handles.append(handle)
        return handle

    def __len__(self) -> int:
        return len(self._handles)

    def cancel_all(self) -> None:
        handles, self._handles = self._handles, []
        for handle in handles:
            handle.cancel()

    def __enter__(self) -> HandleGroup:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cancel_all()


class LoopScheduler:
    """
    Schedules callbacks on the running asyncio loop.

    `now()` is the loop's monotonic clock; wall-clock anchored timers take a
    separate clock callable.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def now(self) -> float:
        return self._get_loop().time()

    def call_later(self, delay: float, callback: Callable[[], None]) -> Handle:
        timer = self._get_loop().call_later(max(0.0, delay), callback)
        return Handle(timer.cancel)


class Ticker:
    """
    Periodic callback: runs `callback` every `interval` seconds until stopped.

    Each tick re-arms itself after the callback returns, so a slow callback
    delays the next tick rather than stacking ticks up.
    """

    def __init__(self, scheduler, interval: float, callback: Callable[[], None]):
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self.scheduler = scheduler
        self.interval = interval
        self.callback = callback
        self._pending: Optional[Handle] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> Handle:
        if not self._running:
            self._running = True
            self._arm()
        return Handle(self.stop)

    def stop(self) -> None:
        self._running = False
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def _arm(self) -> None:
        self._pending = self.scheduler.call_later(self.interval, self._fire)

    def _fire(self) -> None:
        self._pending = None
        if not self._running:
            return
        try:
            self.callback()
        finally:
            if self._running:
                self._arm()
