#Marks routing as a package.
#Re-exports the public routing APIs (OSRMClient, RouteEstimator, ETA formatting)
#so other modules import from routing without knowing internal file names.
#No lifecycle logic.

from .osrm_client import OSRMClient, OSRMError
from .eta_service import (
    RouteEstimator,
    eta_minutes,
    eta_progress_percent,
    format_distance,
    format_eta,
)

__all__ = [
    "OSRMClient",
    "OSRMError",
    "RouteEstimator",
    "format_eta",
    "format_distance",
    "eta_minutes",
    "eta_progress_percent",
]
