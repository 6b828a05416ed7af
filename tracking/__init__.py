#Marks tracking as a package.
#Re-exports the live-position pieces (countdown, location streaming,
#position animation) so screens import from tracking without knowing file names.
#No lifecycle logic.

from .countdown import CountdownTimer, format_clock
from .geo import bearing
from .location_streamer import LocationSample, LocationStreamer, LocationUnavailable
from .location_sources import PollingLocationSource, TracePlaybackSource, resolve_position, termux_location
from .position_animator import PositionAnimator, interpolate

__all__ = [
    "CountdownTimer",
    "format_clock",
    "bearing",
    "LocationSample",
    "LocationStreamer",
    "LocationUnavailable",
    "PollingLocationSource",
    "TracePlaybackSource",
    "resolve_position",
    "termux_location",
    "PositionAnimator",
    "interpolate",
]
