"""
Purpose: Wraps a continuous device-location subscription.
What it does:
- Keeps the latest raw sample for local display, whatever the sample rate.
- Forwards a sample to the channel as `location_update` only when at least
  `interval_seconds` passed since the last forwarded sample (3 s by default),
  bounding the outbound event rate under fast GPS churn.
- On subscription error records the error and notifies listeners; it never
  invents a position.

A location source must provide:
    watch_position(on_sample, on_error) -> Handle
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from help_requests.models import LngLat
from realtime.events import Events, position_payload
from realtime.scheduling import Handle

logger = logging.getLogger(__name__)


def _discard(listeners: list, listener) -> None:
    if listener in listeners:
        listeners.remove(listener)


class LocationUnavailable(Exception):
    """Raised (or passed to on_error) when the device cannot produce a position."""
    pass


@dataclass(frozen=True)
class LocationSample:
    longitude: float
    latitude: float
    accuracy: Optional[float] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def coordinate(self) -> LngLat:
        return (self.longitude, self.latitude)


class LocationStreamer:
    def __init__(
        self,
        source,
        channel,
        *,
        request_id: Optional[str] = None,
        interval_seconds: float = 3.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.source = source
        self.channel = channel
        self.request_id = request_id
        self.interval_seconds = interval_seconds
        self.clock = clock

        self.latest: Optional[LocationSample] = None
        self.last_error: Optional[Exception] = None
        self.samples_seen = 0
        self.forwarded = 0
        self._last_forwarded_at: Optional[float] = None
        self._subscription: Optional[Handle] = None
        self._sample_listeners: List[Callable[[LocationSample], None]] = []
        self._error_listeners: List[Callable[[Exception], None]] = []

    @property
    def streaming(self) -> bool:
        return self._subscription is not None

    def start(self) -> Handle:
        if self._subscription is None:
            self._subscription = self.source.watch_position(self._on_sample, self._on_error)
        return Handle(self.stop)

    def stop(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            subscription.cancel()

    def on_sample(self, listener: Callable[[LocationSample], None]) -> Handle:
        self._sample_listeners.append(listener)
        return Handle(lambda: _discard(self._sample_listeners, listener))

    def on_error(self, listener: Callable[[Exception], None]) -> Handle:
        self._error_listeners.append(listener)
        return Handle(lambda: _discard(self._error_listeners, listener))

    def _on_sample(self, sample: LocationSample) -> None:
        self.latest = sample
        self.last_error = None
        self.samples_seen += 1
        for listener in list(self._sample_listeners):
            listener(sample)

        now = self.clock()
        if self._last_forwarded_at is not None and now - self._last_forwarded_at < self.interval_seconds:
            return
        if self.channel.emit(Events.LOCATION_UPDATE, position_payload(sample.coordinate, self.request_id)):
            self._last_forwarded_at = now
            self.forwarded += 1

    def _on_error(self, error: Exception) -> None:
        self.last_error = error
        logger.warning("Geolocation error: %s", error)
        for listener in list(self._error_listeners):
            listener(error)
