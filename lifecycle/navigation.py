#Maps request and helper statuses to the screen the UI should be showing.
#Pure functions; the lifecycle and the helper desk call them after every change.

from typing import Optional

from help_requests.models import RequestStatus

from .state_machines.helper_state import HelperStatus

SEARCH_SCREEN = "/search"
HELPER_DETAIL_SCREEN = "/helper-detail"
DASHBOARD_SCREEN = "/dashboard"


def screen_for(status: RequestStatus, request_id: Optional[str] = None) -> str:
    if status in (RequestStatus.IDLE, RequestStatus.SEARCHING):
        return SEARCH_SCREEN
    if status in (RequestStatus.HELPER_FOUND, RequestStatus.CONFIRMING):
        return HELPER_DETAIL_SCREEN
    if status is RequestStatus.EN_ROUTE:
        return f"/tracking/{request_id}" if request_id else DASHBOARD_SCREEN
    if status is RequestStatus.CANCELLED:
        return f"/cancelled/{request_id}" if request_id else DASHBOARD_SCREEN
    # Expired and Completed: back to the dashboard
    return DASHBOARD_SCREEN


def helper_screen_for(status: HelperStatus, request_id: Optional[str] = None) -> str:
    if status is HelperStatus.NAVIGATING and request_id:
        return f"/navigation/{request_id}"
    return DASHBOARD_SCREEN
