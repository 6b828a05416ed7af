import asyncio
import json
import subprocess
import threading

import pytest

from help_requests.models import DEFAULT_COORDINATE
from realtime.scheduling import Handle
from tracking import location_sources
from tracking.location_sources import (
    PollingLocationSource,
    TracePlaybackSource,
    resolve_position,
    termux_location,
)
from tracking.location_streamer import LocationSample, LocationStreamer, LocationUnavailable


class ManualSource:
    """Location source the test pushes samples through by hand."""

    def __init__(self):
        self.on_sample = None
        self.on_error = None
        self.released = False

    def watch_position(self, on_sample, on_error):
        self.on_sample = on_sample
        self.on_error = on_error

        def release():
            self.released = True

        return Handle(release)


class RecordingChannel:
    def __init__(self, results=None):
        self.results = list(results or [])
        self.emitted = []

    def emit(self, event, payload=None):
        ok = self.results.pop(0) if self.results else True
        if ok:
            self.emitted.append((event, payload))
        return ok


@pytest.fixture
def clock():
    now = [0.0]
    return now


def sample(lon, lat):
    return LocationSample(longitude=lon, latitude=lat, accuracy=5.0, timestamp=0.0)


def test_streamer_throttles_emits_but_keeps_latest_sample(clock):
    source = ManualSource()
    channel = RecordingChannel()
    streamer = LocationStreamer(source, channel, request_id="r1", clock=lambda: clock[0])
    streamer.start()

    for t, lon in [(0.0, 77.0), (1.0, 77.1), (2.0, 77.2), (3.1, 77.3), (4.0, 77.4)]:
        clock[0] = t
        source.on_sample(sample(lon, 12.9))

    assert streamer.samples_seen == 5
    assert streamer.latest.coordinate == (77.4, 12.9)
    assert streamer.forwarded == 2
    assert channel.emitted == [
        ("location_update", {"longitude": 77.0, "latitude": 12.9, "requestId": "r1"}),
        ("location_update", {"longitude": 77.3, "latitude": 12.9, "requestId": "r1"}),
    ]


def test_dropped_emit_does_not_start_the_throttle_window(clock):
    source = ManualSource()
    channel = RecordingChannel(results=[False, True])
    streamer = LocationStreamer(source, channel, clock=lambda: clock[0])
    streamer.start()

    source.on_sample(sample(77.0, 12.9))
    clock[0] = 0.5
    source.on_sample(sample(77.1, 12.9))

    assert streamer.forwarded == 1
    assert channel.emitted == [("location_update", {"longitude": 77.1, "latitude": 12.9})]


def test_error_is_recorded_and_no_position_is_invented(clock):
    source = ManualSource()
    channel = RecordingChannel()
    streamer = LocationStreamer(source, channel, clock=lambda: clock[0])
    errors = []
    streamer.on_error(errors.append)
    streamer.start()

    source.on_error(LocationUnavailable("permission denied"))

    assert streamer.latest is None
    assert str(streamer.last_error) == "permission denied"
    assert len(errors) == 1
    assert channel.emitted == []


def test_stop_releases_the_subscription():
    source = ManualSource()
    streamer = LocationStreamer(source, RecordingChannel())

    with streamer.start():
        assert streamer.streaming
    assert source.released
    assert not streamer.streaming


def test_polling_source_reports_samples_and_failures(scheduler):
    results = [sample(77.0, 12.9), LocationUnavailable("no fix"), LocationUnavailable("no fix"), sample(77.1, 12.9)]

    def fetch():
        result = results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    source = PollingLocationSource(fetch, interval=1.0, scheduler=scheduler)
    samples, errors, statuses = [], [], []

    async def run():
        handle = source.watch_position(samples.append,
                                       lambda e: (errors.append(e), statuses.append(source.get_status())))
        for _ in range(4):
            scheduler.advance(1)
            await source.pending_fetch
        handle.cancel()

    asyncio.run(run())

    assert [s.coordinate for s in samples] == [(77.0, 12.9), (77.1, 12.9)]
    assert len(errors) == 2
    assert statuses[-1] == "GPS: 2 consecutive failures"
    assert source.get_status() == "GPS OK"


def test_slow_fix_runs_off_the_loop_and_skips_ticks(scheduler):
    release = threading.Event()
    fetch_threads = []

    def slow_fetch():
        fetch_threads.append(threading.get_ident())
        release.wait(timeout=5)
        return sample(77.0, 12.9)

    source = PollingLocationSource(slow_fetch, interval=1.0, scheduler=scheduler)
    samples = []

    async def run():
        handle = source.watch_position(samples.append, lambda e: None)
        scheduler.advance(1)
        pending = source.pending_fetch
        # the loop keeps running timers while the fix is outstanding
        scheduler.advance(3)
        assert source.pending_fetch is pending
        release.set()
        await pending
        handle.cancel()

    asyncio.run(run())

    assert len(fetch_threads) == 1
    assert fetch_threads[0] != threading.get_ident()
    assert [s.coordinate for s in samples] == [(77.0, 12.9)]
    assert scheduler.pending == 0


def test_releasing_the_source_cancels_a_pending_fix(scheduler):
    release = threading.Event()

    def slow_fetch():
        release.wait(timeout=5)
        return sample(77.0, 12.9)

    source = PollingLocationSource(slow_fetch, interval=1.0, scheduler=scheduler)
    samples = []

    async def run():
        handle = source.watch_position(samples.append, lambda e: None)
        scheduler.advance(1)
        pending = source.pending_fetch
        handle.cancel()
        release.set()
        with pytest.raises(asyncio.CancelledError):
            await pending

    asyncio.run(run())

    assert samples == []
    assert source.pending_fetch is None


def test_trace_playback_follows_recorded_offsets(scheduler):
    trace = [(0.0, sample(77.0, 12.9)), (2.0, None), (5.0, sample(77.2, 12.9))]
    source = TracePlaybackSource(trace, speed=1.0, scheduler=scheduler)
    seen = []
    source.watch_position(lambda s: seen.append((scheduler.now(), s.coordinate)),
                          lambda e: seen.append((scheduler.now(), "error")))

    start = scheduler.now()
    scheduler.advance(10)

    assert [(t - start, what) for t, what in seen] == [
        (0.0, (77.0, 12.9)),
        (2.0, "error"),
        (5.0, (77.2, 12.9)),
    ]
    assert source.finished


def test_resolve_position_uses_first_sample():
    class Immediate:
        def watch_position(self, on_sample, on_error):
            on_sample(sample(77.7, 13.0))
            return Handle()

    assert asyncio.run(resolve_position(Immediate(), timeout=1.0)) == (77.7, 13.0)


def test_resolve_position_falls_back_on_error_timeout_or_no_source():
    class Denied:
        def watch_position(self, on_sample, on_error):
            on_error(LocationUnavailable("denied"))
            return Handle()

    class Silent:
        def watch_position(self, on_sample, on_error):
            return Handle()

    assert asyncio.run(resolve_position(Denied(), timeout=1.0)) == DEFAULT_COORDINATE
    assert asyncio.run(resolve_position(Silent(), timeout=0.01)) == DEFAULT_COORDINATE
    assert asyncio.run(resolve_position(None)) == DEFAULT_COORDINATE


def test_termux_location_parses_fix(monkeypatch):
    def fake_run(cmd, capture_output, text, timeout):
        output = json.dumps({"longitude": 77.59, "latitude": 12.97, "accuracy": 8.5})
        return subprocess.CompletedProcess(cmd, 0, stdout=output, stderr="")

    monkeypatch.setattr(location_sources.subprocess, "run", fake_run)
    fix = termux_location()

    assert fix.coordinate == (77.59, 12.97)
    assert fix.accuracy == 8.5


def test_termux_location_missing_binary(monkeypatch):
    def fake_run(*args, **kwargs):
        raise FileNotFoundError("termux-location")

    monkeypatch.setattr(location_sources.subprocess, "run", fake_run)
    with pytest.raises(LocationUnavailable):
        termux_location()
