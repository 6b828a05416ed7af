#Purpose: ETA estimation policy.
#Converts routing outputs into the ETA shown while a helper is en route:
#throttled provider calls (one per throttle window for a stable pair)
#last-known-good estimate when the provider fails
#a local one-second countdown seeded from the route duration
#display formatting ("Arriving in N minutes", "x.xx km", progress bar)
#Keeps ETA logic separate from route computation (osrm_client.py).

from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import Any, Callable, Dict, Hashable, Optional, Set

from help_requests.models import LngLat, RouteEstimate
from tracking.countdown import CountdownTimer

logger = logging.getLogger(__name__)


#----------------
# Display helpers
#----------------
def format_eta(duration_seconds: float) -> str:
    return f"Arriving in {round(duration_seconds / 60)} minutes"


def format_distance(distance_meters: float) -> str:
    return f"{distance_meters / 1000:.2f} km"


def eta_minutes(remaining_seconds: Optional[float]) -> Optional[int]:
    if remaining_seconds is None:
        return None
    return math.ceil(remaining_seconds / 60)


def eta_progress_percent(total_seconds: Optional[float], remaining_seconds: Optional[float]) -> float:
    """Share of the trip already covered, 10 until both numbers are known."""
    if not total_seconds or remaining_seconds is None:
        return 10
    return max(0.0, min(100.0, (total_seconds - remaining_seconds) / total_seconds * 100))


def _route_estimate(result: Dict[str, Any], computed_at: float) -> RouteEstimate:
    duration = result.get("duration", result.get("durationSeconds"))
    distance = result.get("distance", result.get("distanceMeters"))
    if duration is None or distance is None:
        raise ValueError(f"routing result lacks duration/distance: {sorted(result)}")
    return RouteEstimate(
        duration_seconds=float(duration),
        distance_meters=float(distance),
        geometry=result.get("geometry"),
        computed_at=computed_at,
    )


class RouteEstimator:
    """
    Throttled origin -> destination estimates from a routing provider.

    provider must expose estimate_route(origin, destination) returning
    {"duration", "distance", "geometry"} (OSRMClient does). The call is made
    in a worker thread so a slow provider never blocks the event loop.

    Throttle: no new provider call within throttle_seconds of the previous
    call's start. The first call for a new `participants` key is unthrottled.
    In-flight calls are never cancelled by the throttle.
    """

    def __init__(
        self,
        provider,
        *,
        throttle_seconds: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
        scheduler=None,
        tick_interval: float = 1.0,
        on_estimate: Optional[Callable[[RouteEstimate], None]] = None,
    ):
        self.provider = provider
        self.throttle_seconds = throttle_seconds
        self.clock = clock
        self.wall_clock = wall_clock
        self.on_estimate = on_estimate

        self.estimate: Optional[RouteEstimate] = None
        self.last_error: Optional[Exception] = None
        self.calls_issued = 0
        self.countdown = CountdownTimer(0, clock=wall_clock, scheduler=scheduler, tick_interval=tick_interval)

        self._participants: Optional[Hashable] = None
        self._last_started_at: Optional[float] = None
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def remaining_seconds(self) -> Optional[int]:
        if self.estimate is None:
            return None
        return self.countdown.remaining_seconds

    @property
    def eta_text(self) -> Optional[str]:
        return format_eta(self.estimate.duration_seconds) if self.estimate else None

    @property
    def distance_text(self) -> Optional[str]:
        return format_distance(self.estimate.distance_meters) if self.estimate else None

    @property
    def progress_percent(self) -> float:
        total = self.estimate.duration_seconds if self.estimate else None
        return eta_progress_percent(total, self.remaining_seconds)

    def throttled(self) -> bool:
        if self._last_started_at is None:
            return False
        return self.clock() - self._last_started_at < self.throttle_seconds

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(
        self,
        origin: Optional[LngLat],
        destination: Optional[LngLat],
        participants: Optional[Hashable] = None,
    ) -> Optional[RouteEstimate]:
        """
        Asks the provider for a new estimate unless throttled.
        Always returns the current (possibly retained) estimate.
        """
        if origin is None or destination is None:
            return self.estimate

        if participants is not None and participants != self._participants:
            # new pair of actors: forget the previous trip
            self._participants = participants
            self._last_started_at = None
            self.estimate = None
            self.countdown.stop()

        if self.throttled():
            logger.debug("Route refresh throttled; keeping estimate %s", self.estimate)
            return self.estimate

        key = self._participants
        self._last_started_at = self.clock()
        self.calls_issued += 1

        try:
            result = await asyncio.to_thread(self.provider.estimate_route, origin, destination)
            estimate = _route_estimate(result, self.wall_clock())
        except Exception as exc:
            self.last_error = exc
            logger.warning("Route estimate failed (%s); keeping last known estimate", exc)
            return self.estimate

        if key != self._participants:
            logger.debug("Dropping route estimate for a previous pair %s", key)
            return self.estimate

        self.last_error = None
        self.estimate = estimate
        self.countdown.reset(estimate.computed_at + estimate.duration_seconds)
        if not self.countdown.running:
            self.countdown.start()
        logger.info(
            "Route estimate: %s, %s",
            format_eta(estimate.duration_seconds),
            format_distance(estimate.distance_meters),
        )
        if self.on_estimate is not None:
            self.on_estimate(estimate)
        return estimate

    def request(
        self,
        origin: Optional[LngLat],
        destination: Optional[LngLat],
        participants: Optional[Hashable] = None,
    ) -> Optional[asyncio.Task]:
        """Fire-and-forget refresh for callback contexts (location updates)."""
        if origin is None or destination is None:
            return None
        task = asyncio.get_running_loop().create_task(self.refresh(origin, destination, participants))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self.countdown.stop()
