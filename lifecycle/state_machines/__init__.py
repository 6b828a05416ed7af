#Status transition rules for both sides of a help request.
#Pure functions over statuses; orchestration lives in lifecycle.seeker / lifecycle.helper_desk.

from .request_state import RequestStateException, Trigger, apply_transition, can_transition
from .helper_state import HelperStateException, HelperStatus

__all__ = [
    "RequestStateException",
    "Trigger",
    "apply_transition",
    "can_transition",
    "HelperStateException",
    "HelperStatus",
]
