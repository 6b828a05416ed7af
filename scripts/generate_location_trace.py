import numpy as np
import pandas as pd

from help_requests.models import DEFAULT_COORDINATE


def generate_location_trace(duration_seconds=120, mean_gap_seconds=0.5, dropout_rate=0.02,
                            output_file="location_trace.csv", seed=None):
    """
    Generates a GPS trace of a helper walking/driving towards a seeker.
    Samples arrive faster than the 3s emit throttle on purpose (mean gap 0.5s)
    so the replay shows how much of the raw stream is actually forwarded.
    Rows with an empty longitude/latitude are GPS dropouts.
    """
    rng = np.random.default_rng(seed)
    start_lon, start_lat = DEFAULT_COORDINATE

    # 1. Sample times: exponential gaps, like a jittery device
    gaps = rng.exponential(mean_gap_seconds, size=int(duration_seconds / mean_gap_seconds * 2))
    elapsed = np.cumsum(gaps)
    elapsed = elapsed[elapsed <= duration_seconds]

    # 2. Random walk with a steady drift north-east (~10 m per sample)
    steps = rng.normal(loc=0.00008, scale=0.00005, size=(len(elapsed), 2))
    path = np.cumsum(steps, axis=0)
    longitude = np.round(start_lon + path[:, 0], 6)
    latitude = np.round(start_lat + path[:, 1], 6)
    accuracy = np.round(rng.uniform(3.0, 25.0, size=len(elapsed)), 1)

    df = pd.DataFrame({
        "elapsed": np.round(elapsed, 3),
        "longitude": longitude,
        "latitude": latitude,
        "accuracy": accuracy,
    })

    # 3. Knock out a few fixes
    dropouts = rng.random(len(df)) < dropout_rate
    df.loc[dropouts, ["longitude", "latitude", "accuracy"]] = np.nan

    df.to_csv(output_file, index=False)
    print(f"Generated {len(df)} samples over {duration_seconds}s and saved to '{output_file}'")
    print(f"  Dropouts: {int(dropouts.sum())}")
    print(f"  Mean gap: {df['elapsed'].diff().mean():.2f}s")
    return df


if __name__ == "__main__":
    generate_location_trace(duration_seconds=120, seed=7)
