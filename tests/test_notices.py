import pytest

from help_requests.models import RequestStatus
from lifecycle.navigation import helper_screen_for, screen_for
from lifecycle.notices import NoticeBoard
from lifecycle.state_machines.helper_state import HelperStatus


@pytest.fixture
def board(scheduler):
    return NoticeBoard(lifetime=4.0, clock=scheduler.now)


def test_notices_expire_after_lifetime(board, scheduler):
    board.info("Searching... 2 helper(s) nearby")
    scheduler.advance(2)
    board.error("Request has expired")

    assert [n.level for n in board.active()] == ["info", "error"]
    scheduler.advance(2.5)
    assert [n.message for n in board.active()] == ["Request has expired"]
    assert board.prune(scheduler.now() + 10) == 1
    assert board.latest() is None


def test_posting_drops_expired_notices_without_a_reader(board, scheduler):
    for _ in range(50):
        board.info("Searching... 1 helper(s) nearby")
        scheduler.advance(5)
    board.error("Request has expired")

    # everything older than the lifetime was already dropped by post()
    assert board.prune(scheduler.now()) == 0
    assert len(board.active()) == 1


def test_latest_by_level_and_dismiss(board):
    warning = board.warning("Connection lost. Please refresh.")
    board.success("Helper found! Reviewing details...")

    assert board.latest().level == "success"
    assert board.latest("warning") == warning
    assert board.dismiss(warning.id)
    assert not board.dismiss(warning.id)
    assert board.latest("warning") is None


def test_subscribers_see_each_post(board):
    seen = []
    handle = board.subscribe(seen.append)
    board.info("one")
    handle.cancel()
    board.info("two")

    assert [n.message for n in seen] == ["one"]


def test_unknown_level_is_rejected(board):
    with pytest.raises(ValueError):
        board.post("debug", "nope")


@pytest.mark.parametrize("status, request_id, screen", [
    (RequestStatus.IDLE, None, "/search"),
    (RequestStatus.SEARCHING, None, "/search"),
    (RequestStatus.HELPER_FOUND, "r1", "/helper-detail"),
    (RequestStatus.CONFIRMING, "r1", "/helper-detail"),
    (RequestStatus.EN_ROUTE, "r1", "/tracking/r1"),
    (RequestStatus.EN_ROUTE, None, "/dashboard"),
    (RequestStatus.CANCELLED, "r1", "/cancelled/r1"),
    (RequestStatus.EXPIRED, "r1", "/dashboard"),
    (RequestStatus.COMPLETED, "r1", "/dashboard"),
])
def test_seeker_screens(status, request_id, screen):
    assert screen_for(status, request_id) == screen


def test_helper_screens():
    assert helper_screen_for(HelperStatus.NAVIGATING, "r1") == "/navigation/r1"
    assert helper_screen_for(HelperStatus.ONLINE) == "/dashboard"
    assert helper_screen_for(HelperStatus.OFFLINE, "r1") == "/dashboard"
