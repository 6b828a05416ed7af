import pytest

from help_requests.models import CancelInitiator
from realtime.events import (
    ConfirmRedirect,
    EventDecodeError,
    HelperFound,
    LocationUpdate,
    RequestCancelled,
    ServerError,
    decode_event,
    parse_timestamp,
    position_payload,
    reject_request_payload,
    search_help_payload,
)


def test_helper_found_decodes_helper_match():
    event = decode_event("helper_found", {
        "requestId": "r1",
        "helper": {"_id": "h9", "name": "Sam", "rating": 4.8, "currentLocation": {"coordinates": [77.6, 12.98]}},
    })

    assert isinstance(event, HelperFound)
    assert event.request_id == "r1"
    assert event.helper.helper_id == "h9"
    assert event.helper.name == "Sam"
    assert event.helper.rating == 4.8
    assert event.helper.coordinate == (77.6, 12.98)


def test_helper_found_without_request_id_is_rejected():
    with pytest.raises(EventDecodeError):
        decode_event("helper_found", {"helper": {"name": "Sam"}})


def test_location_update_requires_usable_coordinate():
    event = decode_event("location_update", {"longitude": 77.59, "latitude": 12.97, "requestId": "r1"})
    assert event == LocationUpdate(coordinate=(77.59, 12.97), request_id="r1")

    with pytest.raises(EventDecodeError):
        decode_event("location_update", {"longitude": "east", "latitude": 12.97})
    with pytest.raises(EventDecodeError):
        decode_event("location_update", {"longitude": 500, "latitude": 12.97})


def test_confirm_redirect_parses_window_and_seeker_location():
    event = decode_event("confirm_redirect", {
        "requestId": "r1",
        "cancelWindowExpiresAt": "2024-01-01T00:02:00.000Z",
        "seekerLocation": {"type": "Point", "coordinates": [77.59, 12.97]},
        "seekerAddress": "MG Road",
    })

    assert isinstance(event, ConfirmRedirect)
    assert event.cancel_window_expires_at == 1704067320.0
    assert event.seeker_location == (77.59, 12.97)
    assert event.seeker_address == "MG Road"


def test_request_cancelled_defaults_and_unknown_initiator():
    event = decode_event("request_cancelled", {"reason": "Changed my mind", "rejectedBy": "helper"})
    assert event == RequestCancelled(reason="Changed my mind", rejected_by=CancelInitiator.HELPER)

    with pytest.raises(EventDecodeError):
        decode_event("request_cancelled", {"rejectedBy": "admin"})


def test_error_event_accepts_string_or_object():
    assert decode_event("error", "Helper unavailable") == ServerError("Helper unavailable")
    assert decode_event("error", {}) == ServerError("Something went wrong")


def test_unknown_event_and_non_object_payload():
    with pytest.raises(EventDecodeError):
        decode_event("teleport", {})
    with pytest.raises(EventDecodeError):
        decode_event("search_started", ["not", "an", "object"])


def test_parse_timestamp_variants():
    assert parse_timestamp(None) is None
    assert parse_timestamp(1_700_000_000) == 1_700_000_000.0
    assert parse_timestamp(1_700_000_000_000) == 1_700_000_000.0
    assert parse_timestamp("2024-01-01T00:00:00+00:00") == 1704067200.0
    with pytest.raises(EventDecodeError):
        parse_timestamp("tomorrow")


@pytest.mark.parametrize("name, payload", [
    ("search_started", {"helpersNotified": "nan"}),
    ("search_started", {"helpersNotified": "inf"}),
    ("new_request", {"requestId": "r1", "category": "Cleaning", "budget": "inf"}),
    ("new_request", {"requestId": "r1", "budget": 40, "estimatedArrivalTime": float("nan")}),
    ("helper_found", {"requestId": "r1", "helper": {"name": "Sam", "rating": "NaN"}}),
    ("confirm_redirect", {"requestId": "r1", "cancelWindowExpiresAt": float("nan")}),
    ("helper_on_the_way", {"cancelWindowExpiresAt": float("inf")}),
])
def test_non_finite_numbers_are_malformed(name, payload):
    with pytest.raises(EventDecodeError):
        decode_event(name, payload)


def test_outbound_payloads_use_wire_keys():
    assert search_help_payload("Cleaning", 40, 15, (77.59, 12.97)) == {
        "category": "Cleaning",
        "budget": 40,
        "estimatedArrivalTime": 15,
        "longitude": 77.59,
        "latitude": 12.97,
    }
    assert position_payload((77.59, 12.97)) == {"longitude": 77.59, "latitude": 12.97}
    assert position_payload((77.59, 12.97), "r1")["requestId"] == "r1"
    assert reject_request_payload("r1") == {"requestId": "r1"}
    assert reject_request_payload("r1", "Flat tyre") == {"requestId": "r1", "reason": "Flat tyre"}
