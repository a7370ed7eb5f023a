"""Adaptive cut detection ("Visual Cut AI"): median-noise baseline + multiplier/margin threshold + min-length merge."""

import logging
from typing import Sequence

import numpy as np

from scenescout.models.entities import FrameDiff
from scenescout.video.timeline import build_windows

_log = logging.getLogger(__name__)

BASELINE_PERCENTILE = 50.0
THRESHOLD_MULTIPLIER = 3.0
THRESHOLD_MARGIN = 8.0
MIN_SCENE_LEN_SEC = 1.0


def compute_baseline(scores: Sequence[float], percentile: float = BASELINE_PERCENTILE) -> float:
    """Noise level of the diff distribution (median by default). 0.0 for an empty timeline."""
    if len(scores) == 0:
        return 0.0
    return float(np.percentile(np.asarray(scores, dtype=np.float64), percentile))


def cut_threshold(
    baseline: float,
    multiplier: float = THRESHOLD_MULTIPLIER,
    margin: float = THRESHOLD_MARGIN,
) -> float:
    """Score a sample must exceed to become a candidate boundary."""
    return baseline * multiplier + margin


def find_candidates(diffs: Sequence[FrameDiff], threshold: float) -> list[float]:
    """Timestamps whose diff_score exceeds threshold, in timeline order."""
    return [d.timestamp for d in diffs if d.diff_score > threshold]


def merge_boundaries(
    candidates: Sequence[float],
    min_gap: float,
    *,
    origin: float | None = 0.0,
) -> list[float]:
    """
    Collapse clusters of candidates into their earliest timestamp.

    A candidate closer than min_gap to the previous candidate belongs to the same cluster, so a
    run of close candidates (e.g. a fade spanning several samples) keeps only its first timestamp
    however long it lasts. When origin is set it opens the first cluster: candidates chained to
    it within min_gap are dropped.
    """
    kept: list[float] = []
    prev = origin
    for t in sorted(candidates):
        if prev is None or t - prev >= min_gap:
            kept.append(t)
        prev = t
    return kept


class CutDetector:
    """
    Decide scene boundaries from the full diff timeline, once, after the scan.

    A sample is a candidate when its score exceeds baseline * multiplier + margin, where the
    baseline adapts to the video's own motion level. Candidates are merged to respect the
    minimum scene length; a boundary leaving a tail shorter than that length is dropped.
    With no surviving boundary the whole video is one scene (coverage fallback).
    """

    def __init__(
        self,
        *,
        baseline_percentile: float = BASELINE_PERCENTILE,
        threshold_multiplier: float = THRESHOLD_MULTIPLIER,
        threshold_margin: float = THRESHOLD_MARGIN,
        min_scene_len_sec: float = MIN_SCENE_LEN_SEC,
    ) -> None:
        if min_scene_len_sec <= 0:
            raise ValueError("min_scene_len_sec must be positive")
        self.baseline_percentile = baseline_percentile
        self.threshold_multiplier = threshold_multiplier
        self.threshold_margin = threshold_margin
        self.min_scene_len_sec = min_scene_len_sec

    def threshold_for(self, diffs: Sequence[FrameDiff]) -> float:
        baseline = compute_baseline([d.diff_score for d in diffs], self.baseline_percentile)
        return cut_threshold(baseline, self.threshold_multiplier, self.threshold_margin)

    def detect_boundaries(self, diffs: Sequence[FrameDiff], duration: float) -> list[float]:
        """Scene start times, always beginning with 0.0."""
        if duration <= 0:
            raise ValueError("duration must be positive")
        if not diffs:
            return [0.0]
        threshold = self.threshold_for(diffs)
        candidates = find_candidates(diffs, threshold)
        merged = merge_boundaries(candidates, self.min_scene_len_sec)
        boundaries = [t for t in merged if duration - t >= self.min_scene_len_sec]
        _log.debug(
            "Cut detection: threshold=%.2f candidates=%d merged=%d kept=%d",
            threshold,
            len(candidates),
            len(merged),
            len(boundaries),
        )
        if not boundaries:
            _log.info("No cuts above threshold %.2f; single scene (coverage fallback)", threshold)
        return [0.0, *boundaries]

    def detect(self, diffs: Sequence[FrameDiff], duration: float) -> list[tuple[float, float]]:
        """Contiguous [start, end) windows covering [0, duration)."""
        return build_windows(self.detect_boundaries(diffs, duration), duration)
