import asyncio
import logging
import sys
import time

import pandas as pd

from tracking.location_sources import TracePlaybackSource
from tracking.location_streamer import LocationSample, LocationStreamer
from tracking.position_animator import PositionAnimator
from lifecycle.policy import policy_from_env


class RecordingChannel:
    """Stands in for a connected ChannelSession and keeps every emit."""

    def __init__(self):
        self.emitted = []

    def emit(self, event, payload=None):
        self.emitted.append((event, payload))
        return True


def load_trace(filepath="location_trace.csv"):
    df = pd.read_csv(filepath)
    missing = {"elapsed", "longitude", "latitude"} - set(df.columns)
    if missing:
        raise ValueError(f"trace is missing columns: {sorted(missing)}")

    trace = []
    for row in df.itertuples(index=False):
        if pd.isna(row.longitude) or pd.isna(row.latitude):
            trace.append((float(row.elapsed), None))
            continue
        accuracy = getattr(row, "accuracy", None)
        trace.append((float(row.elapsed), LocationSample(
            longitude=float(row.longitude),
            latitude=float(row.latitude),
            accuracy=None if accuracy is None or pd.isna(accuracy) else float(accuracy),
        )))
    return trace


async def replay(filepath="location_trace.csv", speed=10.0, request_id="trace-replay"):
    policy = policy_from_env()
    trace = load_trace(filepath)
    print(f"=== REPLAYING {len(trace)} SAMPLES FROM '{filepath}' AT {speed}x ===")

    # trace time runs `speed` times faster, so the throttle clock must too
    started = time.monotonic()

    def trace_clock():
        return (time.monotonic() - started) * speed

    channel = RecordingChannel()
    source = TracePlaybackSource(trace, speed=speed)
    streamer = LocationStreamer(
        source,
        channel,
        request_id=request_id,
        interval_seconds=policy.location_emit_interval_seconds,
        clock=trace_clock,
    )
    animator = PositionAnimator(
        duration=policy.animation_duration_seconds / speed,
        frame_interval=policy.animation_frame_seconds,
    )
    frames = []
    animator.on_frame = frames.append

    errors = []
    streamer.on_error(errors.append)
    streamer.on_sample(lambda sample: animator.set_target(sample.coordinate))

    with streamer.start():
        while not source.finished:
            await asyncio.sleep(0.05)
        await asyncio.sleep(policy.animation_duration_seconds / speed)
    animator.close()

    print("\n=== REPLAY COMPLETE ===")
    print(f"Raw samples:       {streamer.samples_seen}")
    print(f"GPS errors:        {len(errors)}")
    print(f"Forwarded emits:   {streamer.forwarded} (throttle {policy.location_emit_interval_seconds}s)")
    print(f"Animation frames:  {len(frames)}")
    if streamer.latest is not None:
        print(f"Last position:     {streamer.latest.coordinate}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    path = sys.argv[1] if len(sys.argv) > 1 else "location_trace.csv"
    asyncio.run(replay(path))
