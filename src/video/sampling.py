"""Which timestamps of a video to analyze."""

import math
from dataclasses import dataclass

STRATEGIES = ("uniform", "keyframes")


@dataclass(frozen=True)
class VideoConfig:
    frame_sample_count: int = 8
    sample_strategy: str = "uniform"
    max_duration: float = 30.0  # seconds


def frame_timestamps(
    duration: float,
    count: int = 8,
    strategy: str = "uniform",
    max_duration: float = 30.0,
) -> list[float]:
    """Timestamps (seconds, ascending) to sample from a clip.

    uniform:   count evenly spaced samples, excluding both ends.
    keyframes: 40% from the first 10%, 40% from the last 10% (where key
               backgrounds are usually unobstructed), the rest from the
               30%..70% span.

    Raises:
        ValueError: If strategy is unknown.
    """
    if strategy not in STRATEGIES:
        raise ValueError(f"unknown sample strategy: {strategy}")
    if count <= 0 or not math.isfinite(duration) or duration <= 0:
        return []

    effective = min(duration, max_duration)

    if strategy == "uniform":
        interval = effective / (count + 1)
        return [(i + 1) * interval for i in range(count)]

    timestamps: list[float] = []
    early_count = int(count * 0.4)
    for i in range(early_count):
        timestamps.append(effective * 0.1 * i / early_count)

    late_start = effective * 0.9
    for i in range(early_count):
        timestamps.append(late_start + effective * 0.1 * i / early_count)

    middle_count = count - early_count * 2
    middle_start = effective * 0.3
    middle_end = effective * 0.7
    for i in range(middle_count):
        timestamps.append(middle_start + (middle_end - middle_start) * i / middle_count)

    return sorted(timestamps)
