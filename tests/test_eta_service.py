import asyncio
import threading

import pytest

from routing.eta_service import (
    RouteEstimator,
    eta_minutes,
    eta_progress_percent,
    format_distance,
    format_eta,
)
from routing.osrm_client import OSRMError

HELPER = (77.60, 12.98)
SEEKER = (77.59, 12.97)


class FakeProvider:
    def __init__(self, duration=600.0, distance=4200.0):
        self.calls = []
        self.duration = duration
        self.distance = distance
        self.fail = False

    def estimate_route(self, origin, destination):
        self.calls.append((origin, destination))
        if self.fail:
            raise OSRMError("OSRM error: NoRoute")
        return {
            "duration": self.duration,
            "distance": self.distance,
            "geometry": {"type": "LineString", "coordinates": [list(origin), list(destination)]},
        }


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def estimator(provider, scheduler):
    return RouteEstimator(provider, throttle_seconds=10.0, clock=scheduler.now,
                          wall_clock=scheduler.now, scheduler=scheduler)


def test_formatting_helpers():
    assert format_eta(600) == "Arriving in 10 minutes"
    assert format_distance(4200) == "4.20 km"
    assert eta_minutes(61) == 2
    assert eta_minutes(None) is None
    assert eta_progress_percent(600, 150) == 75
    assert eta_progress_percent(600, 900) == 0
    assert eta_progress_percent(None, 150) == 10
    assert eta_progress_percent(600, None) == 10


def test_second_call_within_throttle_window_reuses_estimate(estimator, provider, scheduler):
    async def run():
        first = await estimator.refresh(HELPER, SEEKER)
        scheduler.advance(3)
        second = await estimator.refresh((77.599, 12.979), SEEKER)
        return first, second

    first, second = asyncio.run(run())

    assert len(provider.calls) == 1
    assert estimator.calls_issued == 1
    assert second is first
    assert first.duration_seconds == 600.0
    assert first.distance_meters == 4200.0
    assert first.geometry["type"] == "LineString"


def test_new_call_after_throttle_window(estimator, provider, scheduler):
    async def run():
        await estimator.refresh(HELPER, SEEKER)
        scheduler.advance(10)
        provider.duration = 300.0
        return await estimator.refresh(HELPER, SEEKER)

    estimate = asyncio.run(run())

    assert len(provider.calls) == 2
    assert estimate.duration_seconds == 300.0


def test_first_call_for_new_participants_is_unthrottled(estimator, provider):
    async def run():
        await estimator.refresh(HELPER, SEEKER, participants=("r1", "h1"))
        await estimator.refresh(HELPER, SEEKER, participants=("r1", "h1"))
        await estimator.refresh(HELPER, SEEKER, participants=("r2", "h7"))

    asyncio.run(run())

    assert len(provider.calls) == 2


def test_provider_failure_keeps_last_known_estimate(estimator, provider, scheduler):
    async def run():
        good = await estimator.refresh(HELPER, SEEKER)
        scheduler.advance(11)
        provider.fail = True
        kept = await estimator.refresh(HELPER, SEEKER)
        return good, kept

    good, kept = asyncio.run(run())

    assert kept is good
    assert isinstance(estimator.last_error, OSRMError)
    assert len(provider.calls) == 2


def test_local_countdown_ticks_between_provider_calls(estimator, scheduler):
    asyncio.run(estimator.refresh(HELPER, SEEKER))

    assert estimator.remaining_seconds == 600
    assert estimator.countdown.running
    scheduler.advance(30)
    assert estimator.remaining_seconds == 570
    assert estimator.progress_percent == pytest.approx(5.0)
    assert estimator.eta_text == "Arriving in 10 minutes"
    assert estimator.distance_text == "4.20 km"

    estimator.close()
    assert not estimator.countdown.running


def test_missing_coordinates_do_not_call_provider(estimator, provider):
    assert asyncio.run(estimator.refresh(None, SEEKER)) is None
    assert provider.calls == []
    assert estimator.remaining_seconds is None


class SlowProvider(FakeProvider):
    """Blocks in the worker thread until released."""

    def __init__(self):
        super().__init__()
        self.release = threading.Event()

    def estimate_route(self, origin, destination):
        self.release.wait(5)
        return super().estimate_route(origin, destination)


def test_refresh_while_a_call_is_in_flight_starts_no_new_call(scheduler):
    provider = SlowProvider()
    estimator = RouteEstimator(provider, throttle_seconds=10.0, clock=scheduler.now,
                               wall_clock=scheduler.now, scheduler=scheduler)

    async def run():
        first = asyncio.get_running_loop().create_task(
            estimator.refresh(HELPER, SEEKER, participants=("r1", "h1")))
        await asyncio.sleep(0)
        second = await estimator.refresh((77.599, 12.979), SEEKER, participants=("r1", "h1"))
        provider.release.set()
        return second, await first

    second, first = asyncio.run(run())

    assert second is None
    assert estimator.calls_issued == 1
    assert len(provider.calls) == 1
    assert first.duration_seconds == 600.0
    assert estimator.estimate is first
