from enum import Enum


class HelperStatus(str, Enum):
    OFFLINE = "offline"
    ONLINE = "online"
    NAVIGATING = "navigating"


class HelperStateException(Exception):
    """Raised when an invalid helper transition is attempted."""
    pass


def go_online(status: HelperStatus) -> HelperStatus:
    """
    Offline helpers become visible to searches once their position is sent.
    """
    if status is not HelperStatus.OFFLINE:
        raise HelperStateException(f"Cannot go online from {status.value}")
    return HelperStatus.ONLINE


def go_offline(status: HelperStatus) -> HelperStatus:
    """
    A navigating helper must finish or reject the active job first.
    """
    if status is not HelperStatus.ONLINE:
        raise HelperStateException(f"Cannot go offline from {status.value}")
    return HelperStatus.OFFLINE


def accept_offer(status: HelperStatus) -> HelperStatus:
    # accepting only marks the offer pending; navigation starts on confirm_redirect
    if status is not HelperStatus.ONLINE:
        raise HelperStateException(f"Cannot accept requests while {status.value}")
    return status


def start_navigation(status: HelperStatus) -> HelperStatus:
    """
    Called when the seeker confirmed this helper (confirm_redirect).
    """
    if status is not HelperStatus.ONLINE:
        raise HelperStateException(f"Cannot start navigation from {status.value}")
    return HelperStatus.NAVIGATING


def end_navigation(status: HelperStatus) -> HelperStatus:
    """
    Job finished, cancelled or rejected: the helper is back in the pool.
    """
    if status is not HelperStatus.NAVIGATING:
        raise HelperStateException(f"No active navigation to end (status {status.value})")
    return HelperStatus.ONLINE
