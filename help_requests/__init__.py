#Marks help_requests as a package.
#Re-exports the request domain models and the session snapshot store.

from .models import (
    DEFAULT_COORDINATE,
    TERMINAL_STATUSES,
    WINDOW_STATUSES,
    CancelInitiator,
    CancellationRecord,
    CancellationWindow,
    HelperMatch,
    LngLat,
    Request,
    RequestStatus,
    RouteEstimate,
    to_coordinate,
)
from .snapshot_store import (
    FileBackend,
    MemoryBackend,
    SessionSnapshot,
    SessionSnapshotStore,
    SnapshotError,
    scope_for,
)

__all__ = [
    "DEFAULT_COORDINATE",
    "TERMINAL_STATUSES",
    "WINDOW_STATUSES",
    "CancelInitiator",
    "CancellationRecord",
    "CancellationWindow",
    "HelperMatch",
    "LngLat",
    "Request",
    "RequestStatus",
    "RouteEstimate",
    "to_coordinate",
    "FileBackend",
    "MemoryBackend",
    "SessionSnapshot",
    "SessionSnapshotStore",
    "SnapshotError",
    "scope_for",
]
