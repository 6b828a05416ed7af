import pytest
import requests

from routing import osrm_client
from routing.osrm_client import OSRMClient, OSRMError


class MockResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


@pytest.fixture
def calls(monkeypatch):
    recorded = []
    responses = []

    def fake_get(url, params=None, timeout=None):
        recorded.append({"url": url, "params": params, "timeout": timeout})
        result = responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    monkeypatch.setattr(osrm_client.requests, "get", fake_get)
    return recorded, responses


def ok_route(duration=754.2, distance=6123.0):
    return {
        "code": "Ok",
        "routes": [{
            "duration": duration,
            "distance": distance,
            "geometry": {"type": "LineString", "coordinates": [[77.6, 12.98], [77.59, 12.97]]},
        }],
    }


def test_compute_route_sends_lon_lat_and_normalizes(calls):
    recorded, responses = calls
    responses.append(MockResponse(ok_route()))
    client = OSRMClient(base_url="http://osrm.test/", timeout=3)

    route = client.estimate_route((77.6, 12.98), (77.59, 12.97))

    assert recorded[0]["url"] == "http://osrm.test/route/v1/driving/77.6,12.98;77.59,12.97"
    assert recorded[0]["params"] == {"overview": "full", "geometries": "geojson"}
    assert recorded[0]["timeout"] == 3
    assert route["duration"] == 754.2
    assert route["distance"] == 6123.0
    assert route["geometry"]["type"] == "LineString"


def test_compute_route_without_geometry(calls):
    recorded, responses = calls
    responses.append(MockResponse(ok_route()))

    route = OSRMClient(base_url="http://osrm.test").compute_route([(0, 0), (1, 1)], geometry=False)

    assert recorded[0]["params"] == {"overview": "false"}
    assert route["geometry"] is None


@pytest.mark.parametrize("payload", [
    {"code": "NoRoute", "message": "Impossible route between points"},
    {"code": "Ok", "routes": []},
])
def test_bad_osrm_answers_raise(calls, payload):
    _, responses = calls
    responses.append(MockResponse(payload))

    with pytest.raises(OSRMError):
        OSRMClient(base_url="http://osrm.test").estimate_route((0, 0), (1, 1))


def test_network_and_decode_failures_raise_osrm_error(calls):
    _, responses = calls
    responses.append(requests.ConnectionError("unreachable"))
    responses.append(MockResponse(ValueError("not json"), status_code=502))
    client = OSRMClient(base_url="http://osrm.test")

    with pytest.raises(OSRMError):
        client.estimate_route((0, 0), (1, 1))
    with pytest.raises(OSRMError):
        client.estimate_route((0, 0), (1, 1))


def test_route_needs_two_points():
    with pytest.raises(ValueError):
        OSRMClient(base_url="http://osrm.test").compute_route([(0, 0)])
