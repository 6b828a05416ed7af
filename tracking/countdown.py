"""
Purpose: Wall-clock anchored countdown ("N seconds until X").
What it does:
- remaining_seconds = max(0, end_time - now), recomputed on every read and tick.
- active = remaining_seconds > 0
- fires on_expired exactly once when remaining goes from > 0 to 0.

Never a decrementing counter: a suspended host (backgrounded process, paused
loop) simply reads the correct remaining time on its next tick.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Callable, Optional

from realtime.scheduling import Handle, LoopScheduler, Ticker

logger = logging.getLogger(__name__)


def format_clock(total_seconds: float) -> str:
    """MM:SS, '00:00' once nothing is left."""
    if total_seconds is None or total_seconds <= 0:
        return "00:00"
    total = int(total_seconds)
    minutes, seconds = divmod(total, 60)
    return f"{minutes:02d}:{seconds:02d}"


class CountdownTimer:
    def __init__(
        self,
        end_time: float,
        *,
        clock: Callable[[], float] = time.time,
        scheduler=None,
        tick_interval: float = 1.0,
        on_tick: Optional[Callable[[int], None]] = None,
        on_expired: Optional[Callable[[], None]] = None,
    ):
        self.clock = clock
        self.scheduler = scheduler or LoopScheduler()
        self.tick_interval = tick_interval
        self.on_tick = on_tick
        self.on_expired = on_expired
        self._ticker: Optional[Ticker] = None
        self._arm(end_time)

    def _arm(self, end_time: float) -> None:
        self.end_time = float(end_time)
        # only a countdown that was ever running can expire
        self._armed = self.remaining_seconds > 0
        self._expired_fired = False

    # ------------------------------------------------------------------
    # Reads (pure functions of end_time - now)
    # ------------------------------------------------------------------

    def remaining_at(self, now: float) -> int:
        return max(0, math.floor(self.end_time - now))

    @property
    def remaining_seconds(self) -> int:
        return self.remaining_at(self.clock())

    @property
    def active(self) -> bool:
        return self.remaining_seconds > 0

    @property
    def expired(self) -> bool:
        return self._expired_fired

    # ------------------------------------------------------------------
    # Ticking
    # ------------------------------------------------------------------

    def tick(self) -> int:
        remaining = self.remaining_seconds
        if self.on_tick is not None:
            self.on_tick(remaining)
        if remaining == 0 and self._armed and not self._expired_fired:
            self._expired_fired = True
            self.stop()
            if self.on_expired is not None:
                self.on_expired()
        return remaining

    def start(self) -> Handle:
        """Ticks immediately, then every tick_interval until expired or stopped."""
        self.stop()
        self.tick()
        if self._expired_fired or not self._armed:
            return Handle()
        self._ticker = Ticker(self.scheduler, self.tick_interval, self.tick)
        return self._ticker.start()

    def stop(self) -> None:
        if self._ticker is not None:
            self._ticker.stop()
            self._ticker = None

    @property
    def running(self) -> bool:
        return self._ticker is not None and self._ticker.running

    def reset(self, end_time: float) -> None:
        """Re-seeds the countdown; keeps ticking if it was running."""
        was_running = self.running
        self.stop()
        self._arm(end_time)
        if was_running:
            self.start()

    def expire_now(self) -> None:
        """Ends the countdown at the current time (server said so)."""
        self.end_time = min(self.end_time, self.clock())
        self.tick()
