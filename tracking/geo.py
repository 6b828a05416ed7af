"""Geographic helpers for marker display."""

import math
from typing import Optional

from help_requests.models import LngLat


def bearing(start: Optional[LngLat], end: Optional[LngLat]) -> float:
    """
    Initial heading from start to end in degrees [0, 360).
    0 when either point is missing.
    """
    if not start or not end:
        return 0.0

    start_lat = math.radians(start[1])
    start_lng = math.radians(start[0])
    end_lat = math.radians(end[1])
    end_lng = math.radians(end[0])

    y = math.sin(end_lng - start_lng) * math.cos(end_lat)
    x = (
        math.cos(start_lat) * math.sin(end_lat)
        - math.sin(start_lat) * math.cos(end_lat) * math.cos(end_lng - start_lng)
    )
    return (math.degrees(math.atan2(y, x)) + 360) % 360
