"""
Purpose: Concrete device-location sources for LocationStreamer.
What it does:
- PollingLocationSource: polls a fetch() callable off the loop (e.g. termux_location).
- termux_location: one GPS fix via the Termux API.
- TracePlaybackSource: replays a recorded trace at its recorded offsets.
- resolve_position: one-shot lookup that falls back to a default coordinate.

Every source exposes watch_position(on_sample, on_error) -> Handle.
"""

from __future__ import annotations

import asyncio
import json
import logging
import subprocess
import time
from typing import Callable, List, Optional

from help_requests.models import DEFAULT_COORDINATE, LngLat
from realtime.scheduling import Handle, LoopScheduler, Ticker

from .location_streamer import LocationSample, LocationUnavailable

logger = logging.getLogger(__name__)


def termux_location(timeout: int = 30) -> LocationSample:
    """Get current location using termux-location"""
    try:
        result = subprocess.run(
            ["termux-location", "-p", "gps", "-r", "once"],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        raise LocationUnavailable(f"termux-location timed out after {timeout}s")
    except FileNotFoundError:
        raise LocationUnavailable("termux-location is not installed")

    if result.returncode != 0:
        error_msg = result.stderr.strip() if result.stderr else "unknown error"
        raise LocationUnavailable(f"termux-location failed: {error_msg}")
    if not result.stdout or not result.stdout.strip():
        raise LocationUnavailable("termux-location returned no fix")

    try:
        data = json.loads(result.stdout)
        return LocationSample(
            longitude=float(data["longitude"]),
            latitude=float(data["latitude"]),
            accuracy=data.get("accuracy"),
            timestamp=time.time(),
        )
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        raise LocationUnavailable(f"unreadable termux-location output: {e}")


class PollingLocationSource:
    """
    Polls fetch() every `interval` seconds while watched.

    fetch() may block (termux_location waits on a subprocess), so it runs in a
    worker thread and its result is delivered back on the loop. At most one
    fetch is in flight; ticks that land while one is pending are skipped.
    """

    def __init__(self, fetch: Callable[[], LocationSample], interval: float = 1.0, scheduler=None):
        self.fetch = fetch
        self.interval = interval
        self.scheduler = scheduler or LoopScheduler()
        self.consecutive_failures = 0
        self.pending_fetch: Optional[asyncio.Task] = None

    async def _fetch_once(self, on_sample, on_error) -> None:
        try:
            sample = await asyncio.to_thread(self.fetch)
        except LocationUnavailable as error:
            self.consecutive_failures += 1
            on_error(error)
            return
        finally:
            self.pending_fetch = None
        self.consecutive_failures = 0
        on_sample(sample)

    def watch_position(self, on_sample, on_error) -> Handle:
        def poll():
            if self.pending_fetch is not None:
                logger.debug("Location fetch still pending, skipping tick")
                return
            self.pending_fetch = asyncio.get_running_loop().create_task(self._fetch_once(on_sample, on_error))

        ticker = Ticker(self.scheduler, self.interval, poll)
        ticker.start()

        def release():
            ticker.stop()
            if self.pending_fetch is not None:
                self.pending_fetch.cancel()
                self.pending_fetch = None

        return Handle(release)

    def get_status(self) -> str:
        if self.consecutive_failures == 0:
            return "GPS OK"
        return f"GPS: {self.consecutive_failures} consecutive failures"


class TracePlaybackSource:
    """
    Plays back a recorded trace.

    Each entry is (elapsed_seconds, LocationSample); entries with a None
    sample replay as LocationUnavailable errors.
    """

    def __init__(self, trace: List[tuple], speed: float = 1.0, scheduler=None):
        if speed <= 0:
            raise ValueError("speed must be > 0")
        self.trace = sorted(trace, key=lambda entry: entry[0])
        self.speed = speed
        self.scheduler = scheduler or LoopScheduler()
        self.index = 0

    @property
    def finished(self) -> bool:
        return self.index >= len(self.trace)

    def watch_position(self, on_sample, on_error) -> Handle:
        pending: List[Optional[Handle]] = [None]

        def play_next():
            if self.finished:
                pending[0] = None
                return
            elapsed, sample = self.trace[self.index]
            self.index += 1
            if sample is None:
                on_error(LocationUnavailable(f"no fix recorded at {elapsed:.1f}s"))
            else:
                on_sample(sample)
            if not self.finished:
                gap = (self.trace[self.index][0] - elapsed) / self.speed
                pending[0] = self.scheduler.call_later(gap, play_next)

        if not self.finished:
            pending[0] = self.scheduler.call_later(0.0, play_next)
        logger.debug("Trace playback starting at entry %s of %s", self.index, len(self.trace))

        def release():
            if pending[0] is not None:
                pending[0].cancel()
                pending[0] = None

        return Handle(release)


async def resolve_position(
    source,
    timeout: float = 3.0,
    fallback: LngLat = DEFAULT_COORDINATE,
) -> LngLat:
    """
    One-shot position: first sample from source, or fallback when the source
    errors or stays silent past timeout.
    """
    if source is None:
        return fallback

    loop = asyncio.get_running_loop()
    first: asyncio.Future = loop.create_future()

    def on_sample(sample: LocationSample):
        if not first.done():
            first.set_result(sample.coordinate)

    def on_error(error: Exception):
        if not first.done():
            first.set_exception(LocationUnavailable(str(error)))

    subscription = source.watch_position(on_sample, on_error)
    try:
        return await asyncio.wait_for(first, timeout=timeout)
    except (LocationUnavailable, asyncio.TimeoutError) as exc:
        logger.warning("Location unavailable (%s), using fallback %s", str(exc) or "timeout", fallback)
        return fallback
    finally:
        subscription.cancel()
