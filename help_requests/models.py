"""
Purpose: Domain models for the help-request capability.
What it does:
- Defines core data structures:
- Request (id, category, budget, status, seeker coordinate, matched helper, timestamps)
- HelperMatch (helper_id, name, rating, coordinate)
- RouteEstimate (duration, distance, geometry, computed_at)
- CancellationWindow (expires_at) and CancellationRecord (reason, initiator)

Defines enums/constants:
- RequestStatus = IDLE | SEARCHING | HELPER_FOUND | CONFIRMING | EN_ROUTE | COMPLETED | CANCELLED | EXPIRED
- CancelInitiator = SEEKER | HELPER

Rule: No channel calls, no timers. Models only.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Tuple

# Wire and routing order: (longitude, latitude)
LngLat = Tuple[float, float]

# Used whenever the device cannot produce a position (Bangalore city centre)
DEFAULT_COORDINATE: LngLat = (77.5946, 12.9716)


class RequestStatus(str, Enum):
    IDLE = "idle"
    SEARCHING = "searching"
    HELPER_FOUND = "helper_found"
    CONFIRMING = "confirming"
    EN_ROUTE = "en_route"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({RequestStatus.COMPLETED, RequestStatus.CANCELLED, RequestStatus.EXPIRED})

# a cancellation window exists exactly while the request is in one of these
WINDOW_STATUSES = frozenset({RequestStatus.CONFIRMING, RequestStatus.EN_ROUTE})


class CancelInitiator(str, Enum):
    SEEKER = "seeker"
    HELPER = "helper"


def to_coordinate(value: Any) -> Optional[LngLat]:
    """
    Normalizes the coordinate shapes the server sends into (lng, lat).

    Accepts [lng, lat], {"coordinates": [lng, lat]} (GeoJSON point),
    {"longitude": .., "latitude": ..} and {"lng": .., "lat": ..}.
    Returns None when the value is missing or not a usable coordinate.
    """
    if value is None:
        return None
    if isinstance(value, dict):
        if "coordinates" in value:
            return to_coordinate(value["coordinates"])
        if "longitude" in value and "latitude" in value:
            return to_coordinate([value["longitude"], value["latitude"]])
        if "lng" in value and "lat" in value:
            return to_coordinate([value["lng"], value["lat"]])
        return None
    if isinstance(value, (list, tuple)) and len(value) == 2:
        try:
            lng, lat = float(value[0]), float(value[1])
        except (TypeError, ValueError):
            return None
        if not (-180.0 <= lng <= 180.0 and -90.0 <= lat <= 90.0):
            return None
        return (lng, lat)
    return None


@dataclass(frozen=True)
class HelperMatch:
    """
    The helper attached to a request once matched.

    Immutable: a location update produces a new instance via `moved_to`,
    every other field only changes when a whole new match arrives.
    """
    helper_id: Optional[str]
    name: str = "Helper"
    rating: Optional[float] = None
    coordinate: Optional[LngLat] = None

    def moved_to(self, coordinate: LngLat) -> HelperMatch:
        return replace(self, coordinate=coordinate)


@dataclass(frozen=True)
class RouteEstimate:
    """
    Derived routing output. Not authoritative; last-known-good on provider failure.
    """
    duration_seconds: float
    distance_meters: float
    geometry: Optional[dict] = None
    computed_at: float = 0.0  # wall-clock epoch seconds


@dataclass
class CancellationWindow:
    """
    Period after confirmation during which cancelling is permitted.
    Remaining time is always derived from the wall clock, never counted down.
    """
    expires_at: float  # wall-clock epoch seconds

    def remaining(self, now: float) -> float:
        return max(0.0, self.expires_at - now)

    def is_open(self, now: float) -> bool:
        return self.remaining(now) > 0


@dataclass(frozen=True)
class CancellationRecord:
    reason: str
    initiator: CancelInitiator


@dataclass
class Request:
    """
    One help transaction from search submission to terminal outcome.
    """

    category: str
    budget: float
    estimated_arrival_time: int  # minutes the seeker is willing to wait
    seeker_coordinate: LngLat

    id: Optional[str] = None  # assigned by the server on helper_found
    status: RequestStatus = RequestStatus.IDLE
    helper: Optional[HelperMatch] = None
    helpers_notified: Optional[int] = None

    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @staticmethod
    def new(category: str, budget: float, estimated_arrival_time: int, seeker_coordinate: LngLat) -> Request:
        return Request(
            category=category,
            budget=budget,
            estimated_arrival_time=estimated_arrival_time,
            seeker_coordinate=seeker_coordinate,
        )
