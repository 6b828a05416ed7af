import pytest

from help_requests.models import HelperMatch, Request, RequestStatus
from lifecycle.state_machines import helper_state
from lifecycle.state_machines.helper_state import HelperStateException, HelperStatus
from lifecycle.state_machines.request_state import (
    RequestStateException,
    Trigger,
    apply_transition,
    can_transition,
)


def make_request(status=RequestStatus.IDLE, helper=None):
    request = Request.new("Cleaning", 40, 15, (77.59, 12.97))
    request.status = status
    request.helper = helper
    return request


def test_happy_path_walks_the_whole_lifecycle():
    request = make_request()
    path = [
        (Trigger.SUBMIT_SEARCH, RequestStatus.SEARCHING),
        (Trigger.SEARCH_ACKNOWLEDGED, RequestStatus.SEARCHING),
        (Trigger.HELPER_FOUND, RequestStatus.HELPER_FOUND),
        (Trigger.CONFIRM, RequestStatus.CONFIRMING),
        (Trigger.HELPER_EN_ROUTE, RequestStatus.EN_ROUTE),
        (Trigger.HELPER_EN_ROUTE, RequestStatus.EN_ROUTE),
        (Trigger.COMPLETE, RequestStatus.COMPLETED),
    ]
    for trigger, expected in path:
        apply_transition(request, trigger)
        assert request.status is expected


def test_apply_returns_previous_status():
    request = make_request(RequestStatus.CONFIRMING)
    assert apply_transition(request, Trigger.CONFIRM_REJECTED) is RequestStatus.CONFIRMING
    assert request.status is RequestStatus.HELPER_FOUND


@pytest.mark.parametrize("status", [RequestStatus.COMPLETED, RequestStatus.CANCELLED, RequestStatus.EXPIRED])
def test_terminal_statuses_accept_nothing(status):
    request = make_request(status, HelperMatch("h1", "Sam"))
    for trigger in Trigger:
        assert not can_transition(request, trigger)


@pytest.mark.parametrize("status", [RequestStatus.EN_ROUTE, RequestStatus.CONFIRMING, RequestStatus.IDLE])
def test_expire_only_before_confirmation(status):
    request = make_request(status)
    with pytest.raises(RequestStateException):
        apply_transition(request, Trigger.EXPIRE)
    assert request.status is status


def test_location_update_needs_a_helper():
    assert not can_transition(make_request(RequestStatus.HELPER_FOUND), Trigger.LOCATION_UPDATE)
    assert not can_transition(make_request(RequestStatus.SEARCHING, HelperMatch("h1", "Sam")), Trigger.LOCATION_UPDATE)

    request = make_request(RequestStatus.HELPER_FOUND, HelperMatch("h1", "Sam"))
    apply_transition(request, Trigger.LOCATION_UPDATE)
    assert request.status is RequestStatus.HELPER_FOUND


def test_cannot_complete_before_en_route():
    with pytest.raises(RequestStateException):
        apply_transition(make_request(RequestStatus.CONFIRMING), Trigger.COMPLETE)


def test_helper_transitions():
    status = helper_state.go_online(HelperStatus.OFFLINE)
    assert status is HelperStatus.ONLINE
    assert helper_state.accept_offer(status) is HelperStatus.ONLINE

    status = helper_state.start_navigation(status)
    assert status is HelperStatus.NAVIGATING
    with pytest.raises(HelperStateException):
        helper_state.go_offline(status)
    with pytest.raises(HelperStateException):
        helper_state.accept_offer(status)

    status = helper_state.end_navigation(status)
    assert helper_state.go_offline(status) is HelperStatus.OFFLINE


def test_helper_cannot_navigate_while_offline():
    with pytest.raises(HelperStateException):
        helper_state.start_navigation(HelperStatus.OFFLINE)
    with pytest.raises(HelperStateException):
        helper_state.end_navigation(HelperStatus.ONLINE)
