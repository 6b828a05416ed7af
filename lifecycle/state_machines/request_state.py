"""
Request status transitions for the seeker side.

Every status change of a Request goes through `apply_transition`; anything
not listed in TRANSITIONS raises RequestStateException and leaves the
request untouched.
"""

from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from help_requests.models import Request, RequestStatus

S = RequestStatus


class RequestStateException(Exception):
    """Raised when an invalid state transition is attempted."""
    pass


class Trigger(str, Enum):
    SUBMIT_SEARCH = "submit_search"
    SEARCH_ACKNOWLEDGED = "search_acknowledged"
    HELPER_FOUND = "helper_found"
    CONFIRM = "confirm"
    CONFIRM_REJECTED = "confirm_rejected"
    HELPER_EN_ROUTE = "helper_en_route"
    LOCATION_UPDATE = "location_update"
    CANCEL = "cancel"
    EXPIRE = "expire"
    COMPLETE = "complete"


# trigger -> (allowed from, to); to=None keeps the current status
TRANSITIONS: Dict[Trigger, Tuple[FrozenSet[RequestStatus], Optional[RequestStatus]]] = {
    Trigger.SUBMIT_SEARCH: (frozenset({S.IDLE}), S.SEARCHING),
    Trigger.SEARCH_ACKNOWLEDGED: (frozenset({S.SEARCHING}), None),
    Trigger.HELPER_FOUND: (frozenset({S.SEARCHING}), S.HELPER_FOUND),
    Trigger.CONFIRM: (frozenset({S.HELPER_FOUND}), S.CONFIRMING),
    # server rejected the confirm: let the seeker retry
    Trigger.CONFIRM_REJECTED: (frozenset({S.CONFIRMING}), S.HELPER_FOUND),
    # a repeat while EnRoute only refreshes the cancellation window
    Trigger.HELPER_EN_ROUTE: (frozenset({S.CONFIRMING, S.EN_ROUTE}), S.EN_ROUTE),
    # accepted before EnRoute only once a helper is attached (checked by can_transition)
    Trigger.LOCATION_UPDATE: (frozenset({S.HELPER_FOUND, S.CONFIRMING, S.EN_ROUTE}), None),
    Trigger.CANCEL: (frozenset({S.SEARCHING, S.HELPER_FOUND, S.CONFIRMING, S.EN_ROUTE}), S.CANCELLED),
    Trigger.EXPIRE: (frozenset({S.SEARCHING, S.HELPER_FOUND}), S.EXPIRED),
    Trigger.COMPLETE: (frozenset({S.EN_ROUTE}), S.COMPLETED),
}


def can_transition(request: Request, trigger: Trigger) -> bool:
    allowed_from, _ = TRANSITIONS[trigger]
    if request.status not in allowed_from:
        return False
    if trigger is Trigger.LOCATION_UPDATE and request.helper is None:
        return False
    return True


def apply_transition(request: Request, trigger: Trigger) -> RequestStatus:
    """
    Moves the request along `trigger` and returns the previous status.
    """
    if not can_transition(request, trigger):
        raise RequestStateException(
            f"Cannot apply {trigger.value} to request {request.id or '<pending>'} in status {request.status.value}"
        )
    previous = request.status
    _, target = TRANSITIONS[trigger]
    if target is not None:
        request.status = target
    return previous
