"""
Purpose: Session snapshot persistence (resume a request after a reload).
What it does:
- Serializes the minimal resumable state:
   - active request descriptor   (sh_active_request)
   - matched helper descriptor   (sh_helper_data)
   - cancellation window end     (sh_cancel_window_end)
- save(snapshot), load() -> snapshot | None, clear()
- The outcome of a cancelled request (sh_cancel_reason) replaces the snapshot
  and is read once by take_cancellation(), so the cancelled screen survives a reload.
- Scoped to one session: rescope() (new login) drops the previous scope;
  scope_for(credential) names the scope of an authenticated identity.

Backends are tiny key/value stores per scope:
   - MemoryBackend: process-local dict (default)
   - FileBackend: one JSON file per scope under a directory

Rule: Only the request lifecycle writes or reads this store.
A snapshot for a terminal request must never exist, so save() refuses one.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from .models import CancelInitiator, CancellationRecord, HelperMatch, Request, RequestStatus

logger = logging.getLogger(__name__)

ACTIVE_REQUEST_KEY = "sh_active_request"
HELPER_DATA_KEY = "sh_helper_data"
CANCEL_WINDOW_END_KEY = "sh_cancel_window_end"
CANCEL_REASON_KEY = "sh_cancel_reason"

ANONYMOUS_SCOPE = "anonymous"


def scope_for(credential: Optional[str]) -> str:
    """Stable scope name for an identity; the credential itself is never stored."""
    if not credential:
        return ANONYMOUS_SCOPE
    return "user-" + hashlib.sha256(credential.encode("utf-8")).hexdigest()[:16]


class SnapshotError(ValueError):
    """Raised when a snapshot cannot be stored (e.g. terminal request)."""
    pass


@dataclass
class SessionSnapshot:
    request: Request
    window_expires_at: Optional[float] = None  # wall-clock epoch seconds

    @property
    def helper(self) -> Optional[HelperMatch]:
        return self.request.helper


# ----------------------------------------------------------------------
# Backends
# ----------------------------------------------------------------------

class MemoryBackend:
    def __init__(self):
        self._scopes: Dict[str, Dict[str, str]] = {}

    def read(self, scope: str) -> Dict[str, str]:
        return dict(self._scopes.get(scope, {}))

    def write(self, scope: str, values: Dict[str, str]) -> None:
        self._scopes[scope] = dict(values)

    def drop(self, scope: str) -> None:
        self._scopes.pop(scope, None)


class FileBackend:
    """One JSON file per scope; the file name is a hash of the scope."""

    def __init__(self, directory: str):
        self.directory = directory
        os.makedirs(directory, exist_ok=True)

    def path_for(self, scope: str) -> str:
        digest = hashlib.sha256(scope.encode("utf-8")).hexdigest()[:24]
        return os.path.join(self.directory, f"session_{digest}.json")

    def read(self, scope: str) -> Dict[str, str]:
        path = self.path_for(scope)
        if not os.path.exists(path):
            return {}
        with open(path, "r", encoding="utf-8") as file:
            data = json.load(file)
        if not isinstance(data, dict):
            raise ValueError(f"session file {path} does not hold an object")
        return data

    def write(self, scope: str, values: Dict[str, str]) -> None:
        path = self.path_for(scope)
        tmp_path = path + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as file:
            json.dump(values, file)
        os.replace(tmp_path, path)

    def drop(self, scope: str) -> None:
        path = self.path_for(scope)
        if os.path.exists(path):
            os.remove(path)


# ----------------------------------------------------------------------
# (De)serialization
# ----------------------------------------------------------------------

def _coordinate_out(value) -> Optional[list]:
    return list(value) if value is not None else None


def _coordinate_in(value) -> Optional[tuple]:
    return tuple(value) if value is not None else None


def helper_to_dict(helper: HelperMatch) -> Dict[str, Any]:
    return {
        "helperId": helper.helper_id,
        "name": helper.name,
        "rating": helper.rating,
        "coordinate": _coordinate_out(helper.coordinate),
    }


def helper_from_dict(data: Dict[str, Any]) -> HelperMatch:
    return HelperMatch(
        helper_id=data.get("helperId"),
        name=data.get("name", "Helper"),
        rating=data.get("rating"),
        coordinate=_coordinate_in(data.get("coordinate")),
    )


def request_to_dict(request: Request) -> Dict[str, Any]:
    return {
        "requestId": request.id,
        "category": request.category,
        "budget": request.budget,
        "estimatedArrivalTime": request.estimated_arrival_time,
        "seekerCoordinate": _coordinate_out(request.seeker_coordinate),
        "status": request.status.value,
        "helpersNotified": request.helpers_notified,
        "createdAt": request.created_at.isoformat(),
    }


def request_from_dict(data: Dict[str, Any], helper: Optional[HelperMatch]) -> Request:
    return Request(
        category=data["category"],
        budget=data["budget"],
        estimated_arrival_time=data["estimatedArrivalTime"],
        seeker_coordinate=_coordinate_in(data["seekerCoordinate"]),
        id=data.get("requestId"),
        status=RequestStatus(data["status"]),
        helper=helper,
        helpers_notified=data.get("helpersNotified"),
        created_at=datetime.fromisoformat(data["createdAt"]),
    )


# ----------------------------------------------------------------------
# Store
# ----------------------------------------------------------------------

class SessionSnapshotStore:
    def __init__(self, backend=None, scope: str = ANONYMOUS_SCOPE):
        self.backend = backend if backend is not None else MemoryBackend()
        self.scope = scope

    def save(self, snapshot: SessionSnapshot) -> None:
        request = snapshot.request
        if request.status.is_terminal:
            raise SnapshotError(f"refusing to snapshot terminal request (status={request.status.value})")

        values = {ACTIVE_REQUEST_KEY: json.dumps(request_to_dict(request))}
        if request.helper is not None:
            values[HELPER_DATA_KEY] = json.dumps(helper_to_dict(request.helper))
        if snapshot.window_expires_at is not None:
            values[CANCEL_WINDOW_END_KEY] = json.dumps(snapshot.window_expires_at)
        self.backend.write(self.scope, values)

    def load(self) -> Optional[SessionSnapshot]:
        try:
            values = self.backend.read(self.scope)
            if ACTIVE_REQUEST_KEY not in values:
                return None
            helper = None
            if HELPER_DATA_KEY in values:
                helper = helper_from_dict(json.loads(values[HELPER_DATA_KEY]))
            request = request_from_dict(json.loads(values[ACTIVE_REQUEST_KEY]), helper)
            window_end = None
            if CANCEL_WINDOW_END_KEY in values:
                window_end = float(json.loads(values[CANCEL_WINDOW_END_KEY]))
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Discarding unreadable session snapshot for scope %r: %s", self.scope, exc)
            self.clear()
            return None

        if request.status.is_terminal:
            self.clear()
            return None
        return SessionSnapshot(request=request, window_expires_at=window_end)

    def clear(self) -> None:
        self.backend.drop(self.scope)

    def exists(self) -> bool:
        return ACTIVE_REQUEST_KEY in self.backend.read(self.scope)

    def save_cancellation(self, request_id: Optional[str], record: CancellationRecord) -> None:
        """Replaces the snapshot with the outcome of a cancelled request."""
        outcome = {"requestId": request_id, "reason": record.reason, "rejectedBy": record.initiator.value}
        self.backend.write(self.scope, {CANCEL_REASON_KEY: json.dumps(outcome)})

    def take_cancellation(self) -> Optional[Tuple[Optional[str], CancellationRecord]]:
        """
        Returns (request_id, record) for the last cancelled request and drops
        it, or None. Read once: the cancelled screen shows it a single time.
        """
        try:
            values = self.backend.read(self.scope)
            if CANCEL_REASON_KEY not in values:
                return None
            outcome = json.loads(values[CANCEL_REASON_KEY])
            record = CancellationRecord(outcome["reason"], CancelInitiator(outcome["rejectedBy"]))
            request_id = outcome.get("requestId")
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Discarding unreadable cancellation outcome for scope %r: %s", self.scope, exc)
            request_id, record = None, None
        self.clear()
        if record is None:
            return None
        return request_id, record

    def rescope(self, scope: str, *, drop_previous: bool = True) -> None:
        """
        Identity changed: the previous session's snapshot must not leak.
        drop_previous=False only switches scope (first login after startup).
        """
        if scope == self.scope:
            return
        if drop_previous:
            self.clear()
        self.scope = scope
