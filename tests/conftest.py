import asyncio
import heapq
import itertools

import pytest

from realtime.channel import ChannelSession
from realtime.scheduling import Handle


class FakeScheduler:
    """
    Controllable clock + call_later. Time only moves on advance().
    now() doubles as the wall clock and the monotonic clock in tests.
    """

    def __init__(self, start=1_700_000_000.0):
        self._now = start
        self._queue = []
        self._seq = itertools.count()

    def now(self):
        return self._now

    def call_later(self, delay, callback):
        entry = [self._now + max(0.0, delay), next(self._seq), callback, True]
        heapq.heappush(self._queue, entry)

        def release():
            entry[3] = False

        return Handle(release)

    def advance(self, seconds):
        target = self._now + seconds
        while self._queue and self._queue[0][0] <= target:
            due, _, callback, active = heapq.heappop(self._queue)
            if not active:
                continue
            self._now = max(self._now, due)
            callback()
        self._now = target

    @property
    def pending(self):
        return sum(1 for entry in self._queue if entry[3])


class FakeTransport:
    """Duck-typed transport: records emits, lets tests deliver server events."""

    def __init__(self, fail=False):
        self.fail = fail
        self.connected = False
        self.handlers = {}
        self.emitted = []
        self.connect_calls = 0
        self.credential = None

    async def connect(self, url, credential):
        self.connect_calls += 1
        self.credential = credential
        if self.fail:
            raise ConnectionError("connection refused")
        self.connected = True

    async def disconnect(self):
        self.connected = False

    def emit(self, event, payload=None):
        self.emitted.append((event, payload))

    def on(self, event, handler):
        self.handlers[event] = handler

    def deliver(self, event, data=None):
        self.handlers[event](data)

    def drop(self, reason="transport close"):
        self.connected = False
        self.handlers["disconnect"](reason)

    def events(self, name):
        return [payload for event, payload in self.emitted if event == name]


async def no_sleep(delay):
    return None


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def transports():
    return []


@pytest.fixture
def channel(transports, scheduler):
    def factory():
        transport = FakeTransport()
        transports.append(transport)
        return transport

    return ChannelSession(factory, "http://realtime.test", clock=scheduler.now, sleep=no_sleep)


@pytest.fixture
def connected_channel(channel):
    asyncio.run(channel.connect("token-seeker"))
    assert channel.is_connected
    return channel
