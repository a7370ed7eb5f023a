"""Sampling cadence and scene-window construction shared by both segmentation modes."""

import math

# Timestamps are rounded to microseconds so repeated i * interval products compare cleanly.
_TS_DIGITS = 6


def sample_timestamps(duration: float, interval: float) -> list[float]:
    """Uniform sampling points 0, interval, 2*interval, ... strictly below duration."""
    if interval <= 0:
        raise ValueError("sampling interval must be positive")
    if duration <= 0:
        return []
    count = int(math.ceil(round(duration / interval, 9)))
    timestamps = [round(i * interval, _TS_DIGITS) for i in range(count)]
    return [t for t in timestamps if t < duration]


def build_windows(starts: list[float], duration: float) -> list[tuple[float, float]]:
    """
    Turn scene start times into contiguous [start, end) windows covering [0, duration).

    Starts are sorted and de-duplicated; anything <= 0 or >= duration is dropped and 0 is always
    the first start, so the result is never empty for a positive duration.
    """
    if duration <= 0:
        raise ValueError("duration must be positive")
    rounded = {round(s, _TS_DIGITS) for s in starts}
    inner = sorted(s for s in rounded if 0 < s < duration)
    bounds = [0.0, *inner, duration]
    return [(bounds[i], bounds[i + 1]) for i in range(len(bounds) - 1)]
