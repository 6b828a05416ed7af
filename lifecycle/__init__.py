#Expose the high-level lifecycle pieces:
#Seeker request lifecycle (the single owner of the active request)
#Helper desk (availability, inbox, navigation)
#Policy, notices and screen mapping

from .policy import TrackingPolicy, default_tracking_policy, policy_from_env
from .notices import Notice, NoticeBoard
from .navigation import helper_screen_for, screen_for
from .seeker import RequestLifecycle
from .helper_desk import HelperDesk, HelperJob

__all__ = [
    "TrackingPolicy",
    "default_tracking_policy",
    "policy_from_env",
    "Notice",
    "NoticeBoard",
    "screen_for",
    "helper_screen_for",
    "RequestLifecycle",
    "HelperDesk",
    "HelperJob",
]
