"""
Purpose: Central configuration for request tracking and realtime timing.
What it does:

Stores all tunable intervals/caps used by the lifecycle and its collaborators:

LOCATION_EMIT_INTERVAL = 3.0 s   (outbound location_update throttle)
ROUTE_THROTTLE = 10.0 s          (routing provider call throttle)
RECONNECT_ATTEMPTS = 5           (bounded channel retry)

Environment overrides (policy_from_env):
   LOCATION_EMIT_INTERVAL_MS, ROUTE_THROTTLE_MS, RECONNECT_ATTEMPTS

Rule: No logic here, just parameters so you can tune without rewriting code.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional

from dotenv import load_dotenv

from help_requests.models import DEFAULT_COORDINATE, LngLat


@dataclass(frozen=True)
class TrackingPolicy:
    """
    Central configuration for tracking, countdown and reconnect thresholds.
    """

    # --- Location streaming ---
    # Minimum gap between two forwarded location_update emits.
    location_emit_interval_seconds: float = 3.0
    # One-shot lookups (go online, search) give up after this and use the fallback.
    location_timeout_seconds: float = 3.0
    fallback_coordinate: LngLat = DEFAULT_COORDINATE

    # --- Marker animation ---
    animation_duration_seconds: float = 0.8
    animation_frame_seconds: float = 1 / 60

    # --- Routing ---
    route_throttle_seconds: float = 10.0

    # --- Countdowns ---
    countdown_tick_seconds: float = 1.0
    # Window opened locally on confirm until the server sends its own expiry.
    provisional_cancel_window_seconds: float = 120.0

    # --- Channel reconnect ---
    reconnect_attempts: int = 5
    reconnect_delay_seconds: float = 1.0
    reconnect_delay_max_seconds: float = 5.0

    # --- Notices ---
    notice_lifetime_seconds: float = 4.0

    def validate(self) -> None:
        """
        Basic sanity checks.
        """
        if self.location_emit_interval_seconds < 0:
            raise ValueError("location_emit_interval_seconds must be >= 0")

        if self.location_timeout_seconds <= 0:
            raise ValueError("location_timeout_seconds must be > 0")

        if self.animation_duration_seconds <= 0 or self.animation_frame_seconds <= 0:
            raise ValueError("animation duration and frame interval must be > 0")

        if self.route_throttle_seconds < 0:
            raise ValueError("route_throttle_seconds must be >= 0")

        if self.countdown_tick_seconds <= 0:
            raise ValueError("countdown_tick_seconds must be > 0")

        if self.provisional_cancel_window_seconds <= 0:
            raise ValueError("provisional_cancel_window_seconds must be > 0")

        if self.reconnect_attempts < 0:
            raise ValueError("reconnect_attempts must be >= 0")

        if self.reconnect_delay_seconds < 0 or self.reconnect_delay_max_seconds < self.reconnect_delay_seconds:
            raise ValueError("reconnect delays must satisfy 0 <= delay <= max delay")

        lng, lat = self.fallback_coordinate
        if not (-180 <= lng <= 180 and -90 <= lat <= 90):
            raise ValueError(f"fallback_coordinate out of range: {self.fallback_coordinate}")

        if self.notice_lifetime_seconds <= 0:
            raise ValueError("notice_lifetime_seconds must be > 0")


def default_tracking_policy() -> TrackingPolicy:
    """
    Convenience factory for the default policy.
    """
    p = TrackingPolicy()
    p.validate()
    return p


def _millis(environ: Mapping[str, str], name: str) -> Optional[float]:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return float(raw) / 1000.0
    except ValueError:
        raise ValueError(f"{name} must be a number of milliseconds, got {raw!r}")


def policy_from_env(environ: Optional[Mapping[str, str]] = None) -> TrackingPolicy:
    """
    Default policy with overrides from the environment (.env is loaded first).
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    changes = {}
    location_interval = _millis(environ, "LOCATION_EMIT_INTERVAL_MS")
    if location_interval is not None:
        changes["location_emit_interval_seconds"] = location_interval

    route_throttle = _millis(environ, "ROUTE_THROTTLE_MS")
    if route_throttle is not None:
        changes["route_throttle_seconds"] = route_throttle

    attempts = environ.get("RECONNECT_ATTEMPTS")
    if attempts is not None and attempts.strip() != "":
        try:
            changes["reconnect_attempts"] = int(attempts)
        except ValueError:
            raise ValueError(f"RECONNECT_ATTEMPTS must be an integer, got {attempts!r}")

    p = replace(TrackingPolicy(), **changes)
    p.validate()
    return p
