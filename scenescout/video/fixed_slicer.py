"""Fixed-duration slicing: boundaries every D seconds, short trailing remainder merged into the previous slice."""

import math

from scenescout.video.timeline import build_windows

MIN_REMAINDER_SEC = 0.25


def slice_fixed(
    duration: float,
    segment_sec: float,
    *,
    min_remainder_sec: float = MIN_REMAINDER_SEC,
) -> list[float]:
    """
    Scene start times 0, D, 2D, ... below duration.

    The last slice [kD, duration) is kept even when shorter than D, unless it is shorter than
    min_remainder_sec; then it is absorbed by the previous slice. Scene count is therefore
    ceil(L / D), or floor(L / D) when the remainder is too short.
    """
    if not math.isfinite(segment_sec) or segment_sec <= 0:
        raise ValueError("segment_sec must be a positive finite number")
    if not math.isfinite(duration) or duration <= 0:
        raise ValueError("duration must be a positive finite number")
    count = max(1, int(math.ceil(round(duration / segment_sec, 9))))
    starts = [i * segment_sec for i in range(count)]
    if len(starts) > 1 and duration - starts[-1] < min_remainder_sec:
        starts.pop()
    return starts


def fixed_windows(
    duration: float,
    segment_sec: float,
    *,
    min_remainder_sec: float = MIN_REMAINDER_SEC,
) -> list[tuple[float, float]]:
    return build_windows(
        slice_fixed(duration, segment_sec, min_remainder_sec=min_remainder_sec),
        duration,
    )
