"""
Purpose: The realtime event vocabulary.
What it does:
- Names every event on the channel (seeker, helper and server initiated).
- Decodes server payloads into a closed set of frozen dataclasses. A payload
  missing a required field raises EventDecodeError instead of being trusted.
- Builds outbound payloads with the server's camelCase keys.

Rule: No connection handling here; channel.py moves bytes, this file gives them shape.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Union

from help_requests.models import CancelInitiator, HelperMatch, LngLat, to_coordinate


class Events:
    # Seeker emits
    SEARCH_HELP = "search_help"
    CONFIRM_HELPER = "confirm_helper"
    CANCEL_REQUEST = "cancel_request"

    # Helper emits
    GO_ONLINE = "go_online"
    GO_OFFLINE = "go_offline"
    ACCEPT_REQUEST = "accept_request"
    REJECT_REQUEST = "reject_request"
    LOCATION_UPDATE = "location_update"

    # Server emits
    SEARCH_STARTED = "search_started"
    NEW_REQUEST = "new_request"
    REQUEST_LOCKED = "request_locked"
    HELPER_FOUND = "helper_found"
    HELPER_ON_THE_WAY = "helper_on_the_way"
    CONFIRM_REDIRECT = "confirm_redirect"
    REQUEST_CANCELLED = "request_cancelled"
    REQUEST_EXPIRED = "request_expired"
    CANCEL_WINDOW_EXPIRED = "cancel_window_expired"
    ERROR = "error"

    # Connection lifecycle (reserved, raised by the transport itself)
    CONNECT = "connect"
    DISCONNECT = "disconnect"
    CONNECT_ERROR = "connect_error"


RESERVED_EVENTS = frozenset({Events.CONNECT, Events.DISCONNECT, Events.CONNECT_ERROR})


class EventDecodeError(ValueError):
    """Raised when a server payload does not match its event's shape."""
    pass


# ---------------------------------------------------------------------------
# Server events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SearchStarted:
    helpers_notified: int


@dataclass(frozen=True)
class NewRequest:
    request_id: str
    category: str
    budget: float
    estimated_arrival_time: Optional[int] = None


@dataclass(frozen=True)
class RequestLocked:
    request_id: str
    message: str = "Request accepted!"


@dataclass(frozen=True)
class HelperFound:
    request_id: str
    helper: HelperMatch


@dataclass(frozen=True)
class HelperOnTheWay:
    request_id: Optional[str] = None
    cancel_window_expires_at: Optional[float] = None


@dataclass(frozen=True)
class ConfirmRedirect:
    request_id: str
    cancel_window_expires_at: Optional[float] = None
    seeker_location: Optional[LngLat] = None
    seeker_address: Optional[str] = None


@dataclass(frozen=True)
class LocationUpdate:
    coordinate: LngLat
    request_id: Optional[str] = None


@dataclass(frozen=True)
class RequestCancelled:
    reason: str
    rejected_by: CancelInitiator
    request_id: Optional[str] = None


@dataclass(frozen=True)
class RequestExpired:
    request_id: Optional[str] = None


@dataclass(frozen=True)
class CancelWindowExpired:
    request_id: Optional[str] = None


@dataclass(frozen=True)
class ServerError:
    message: str


ServerEvent = Union[
    SearchStarted,
    NewRequest,
    RequestLocked,
    HelperFound,
    HelperOnTheWay,
    ConfirmRedirect,
    LocationUpdate,
    RequestCancelled,
    RequestExpired,
    CancelWindowExpired,
    ServerError,
]


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------

def _as_dict(payload: Any) -> Dict[str, Any]:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise EventDecodeError(f"expected an object payload, got {type(payload).__name__}")
    return payload


def _require(payload: Dict[str, Any], key: str) -> Any:
    value = payload.get(key)
    if value is None or value == "":
        raise EventDecodeError(f"missing required field '{key}'")
    return value


def _optional_id(payload: Dict[str, Any]) -> Optional[str]:
    value = payload.get("requestId")
    if value is None or value == "":
        return None
    return str(value)


def _number(value: Any, key: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise EventDecodeError(f"field '{key}' is not a number: {value!r}")
    if not math.isfinite(number):
        raise EventDecodeError(f"field '{key}' is not a finite number: {value!r}")
    return number


def parse_timestamp(value: Any) -> Optional[float]:
    """
    Converts a server timestamp into wall-clock epoch seconds.

    The server sends ISO-8601 strings; epoch numbers are accepted too
    (values above 1e11 are taken as milliseconds).
    """
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if not math.isfinite(value):
            raise EventDecodeError(f"non-finite timestamp: {value!r}")
        return value / 1000.0 if value > 1e11 else float(value)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(text)
        except ValueError:
            raise EventDecodeError(f"unparseable timestamp: {value!r}")
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.timestamp()
    raise EventDecodeError(f"unsupported timestamp type: {type(value).__name__}")


def _helper_from(payload: Any) -> HelperMatch:
    helper = _as_dict(payload)
    helper_id = helper.get("id") or helper.get("_id") or helper.get("helperId")
    rating = helper.get("rating")
    coordinate = to_coordinate(helper) or to_coordinate(helper.get("currentLocation"))
    return HelperMatch(
        helper_id=str(helper_id) if helper_id is not None else None,
        name=helper.get("name") or "Helper",
        rating=_number(rating, "rating") if rating is not None else None,
        coordinate=coordinate,
    )


# ---------------------------------------------------------------------------
# Decoders
# ---------------------------------------------------------------------------

def _search_started(payload):
    data = _as_dict(payload)
    return SearchStarted(helpers_notified=int(_number(data.get("helpersNotified", 0), "helpersNotified")))


def _new_request(payload):
    data = _as_dict(payload)
    eta = data.get("estimatedArrivalTime")
    return NewRequest(
        request_id=str(_require(data, "requestId")),
        category=str(data.get("category") or "General"),
        budget=_number(data.get("budget", 0), "budget"),
        estimated_arrival_time=int(_number(eta, "estimatedArrivalTime")) if eta is not None else None,
    )


def _request_locked(payload):
    data = _as_dict(payload)
    return RequestLocked(
        request_id=str(_require(data, "requestId")),
        message=data.get("message") or "Request accepted!",
    )


def _helper_found(payload):
    data = _as_dict(payload)
    return HelperFound(
        request_id=str(_require(data, "requestId")),
        helper=_helper_from(data.get("helper")),
    )


def _helper_on_the_way(payload):
    data = _as_dict(payload)
    return HelperOnTheWay(
        request_id=_optional_id(data),
        cancel_window_expires_at=parse_timestamp(data.get("cancelWindowExpiresAt")),
    )


def _confirm_redirect(payload):
    data = _as_dict(payload)
    return ConfirmRedirect(
        request_id=str(_require(data, "requestId")),
        cancel_window_expires_at=parse_timestamp(data.get("cancelWindowExpiresAt")),
        seeker_location=to_coordinate(data.get("seekerLocation")),
        seeker_address=data.get("seekerAddress") or data.get("address"),
    )


def _location_update(payload):
    data = _as_dict(payload)
    coordinate = to_coordinate(data)
    if coordinate is None:
        raise EventDecodeError("location_update without a usable longitude/latitude")
    return LocationUpdate(coordinate=coordinate, request_id=_optional_id(data))


def _request_cancelled(payload):
    data = _as_dict(payload)
    rejected_by = data.get("rejectedBy") or CancelInitiator.SEEKER.value
    try:
        initiator = CancelInitiator(rejected_by)
    except ValueError:
        raise EventDecodeError(f"unknown rejectedBy value: {rejected_by!r}")
    return RequestCancelled(
        reason=data.get("reason") or data.get("message") or "The request was cancelled.",
        rejected_by=initiator,
        request_id=_optional_id(data),
    )


def _request_expired(payload):
    return RequestExpired(request_id=_optional_id(_as_dict(payload)))


def _cancel_window_expired(payload):
    return CancelWindowExpired(request_id=_optional_id(_as_dict(payload)))


def _server_error(payload):
    if isinstance(payload, str):
        return ServerError(message=payload or "Something went wrong")
    data = _as_dict(payload)
    return ServerError(message=data.get("message") or "Something went wrong")


DECODERS: Dict[str, Callable[[Any], ServerEvent]] = {
    Events.SEARCH_STARTED: _search_started,
    Events.NEW_REQUEST: _new_request,
    Events.REQUEST_LOCKED: _request_locked,
    Events.HELPER_FOUND: _helper_found,
    Events.HELPER_ON_THE_WAY: _helper_on_the_way,
    Events.CONFIRM_REDIRECT: _confirm_redirect,
    Events.LOCATION_UPDATE: _location_update,
    Events.REQUEST_CANCELLED: _request_cancelled,
    Events.REQUEST_EXPIRED: _request_expired,
    Events.CANCEL_WINDOW_EXPIRED: _cancel_window_expired,
    Events.ERROR: _server_error,
}

SERVER_EVENTS = frozenset(DECODERS)


def decode_event(name: str, payload: Any) -> ServerEvent:
    """
    Turns a raw (event name, payload) pair into its typed event.

    Raises EventDecodeError for unknown event names and malformed payloads.
    """
    decoder = DECODERS.get(name)
    if decoder is None:
        raise EventDecodeError(f"unknown server event '{name}'")
    return decoder(payload)


# ---------------------------------------------------------------------------
# Outbound payloads
# ---------------------------------------------------------------------------

def search_help_payload(category: str, budget: float, estimated_arrival_time: int, coordinate: LngLat) -> dict:
    longitude, latitude = coordinate
    return {
        "category": category,
        "budget": budget,
        "estimatedArrivalTime": estimated_arrival_time,
        "longitude": longitude,
        "latitude": latitude,
    }


def request_id_payload(request_id: Optional[str]) -> dict:
    return {"requestId": request_id}


def reject_request_payload(request_id: str, reason: Optional[str] = None) -> dict:
    payload = {"requestId": request_id}
    if reason:
        payload["reason"] = reason
    return payload


def position_payload(coordinate: LngLat, request_id: Optional[str] = None) -> dict:
    longitude, latitude = coordinate
    payload = {"longitude": longitude, "latitude": latitude}
    if request_id is not None:
        payload["requestId"] = request_id
    return payload
