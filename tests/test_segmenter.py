"""Tests for SceneSegmenter: coverage, adaptive cuts, fixed slicing, progress, cancellation, failures."""

import math
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from scenescout.core.config import Settings, ThumbnailSettings
from scenescout.models.entities import SCENE_ID_BASE, ModeKind, SegmentationMode
from scenescout.video.errors import Cancelled, DecodeError, SeekError
from scenescout.video.progress import ProgressStatus, ProgressTracker
from scenescout.video.segmenter import SceneSegmenter, _split_contiguous
from scenescout.video.thumbnail import DATA_URL_PREFIX
from scenescout.video.timeline import sample_timestamps
from tests.synthetic import SourceFactory, flat_color_at

pytestmark = [pytest.mark.fast]


def _assert_contiguous(result, duration):
    scenes = result.scenes
    assert scenes, "scenes must never be empty"
    assert scenes[0].start_time == 0.0
    assert scenes[-1].end_time == pytest.approx(duration, abs=1e-6)
    for a, b in zip(scenes, scenes[1:]):
        assert a.end_time == b.start_time
        assert a.start_time < a.end_time
    assert [s.id for s in scenes] == list(range(SCENE_ID_BASE, SCENE_ID_BASE + len(scenes)))


# --- adaptive mode ---


def test_adaptive_zero_change_returns_single_scene(settings, flat_factory):
    """No frame-to-frame change: coverage fallback gives exactly one scene spanning the video."""
    factory = flat_factory(10.0)
    result = SceneSegmenter(settings, source_factory=factory).segment("v.mp4", SegmentationMode.adaptive())
    assert len(result.scenes) == 1
    assert (result.scenes[0].start_time, result.scenes[0].end_time) == (0.0, 10.0)
    assert all(d.diff_score == 0.0 for d in result.diffs)
    _assert_contiguous(result, 10.0)


def test_adaptive_evenly_spaced_cuts_yield_n_plus_one_scenes(settings, cuts_factory):
    """Three hard cuts separated by more than min_scene_len give four scenes starting at the cuts."""
    cuts = [2.5, 5.0, 7.5]
    factory = cuts_factory(cuts, duration=10.0)
    result = SceneSegmenter(settings, source_factory=factory).segment("v.mp4", SegmentationMode.adaptive())
    assert len(result.scenes) == len(cuts) + 1
    starts = [s.start_time for s in result.scenes[1:]]
    interval = settings.segmentation.sampling_interval_sec
    for start, cut in zip(starts, cuts):
        assert start == pytest.approx(cut, abs=interval)
    _assert_contiguous(result, 10.0)


def test_adaptive_cut_between_samples_lands_on_next_sample(settings, cuts_factory):
    """A cut between sampling points is reported at the first sample after it (within one interval)."""
    factory = cuts_factory([3.2, 6.7], duration=10.0)
    result = SceneSegmenter(settings, source_factory=factory).segment("v.mp4", SegmentationMode.adaptive())
    assert [s.start_time for s in result.scenes] == [0.0, 3.5, 7.0]


def test_adaptive_close_cuts_merge_into_earlier(settings, cuts_factory):
    """Two cuts closer than min_scene_len (1s) collapse into one boundary at the earlier one."""
    factory = cuts_factory([3.0, 3.4], duration=10.0)
    result = SceneSegmenter(settings, source_factory=factory).segment("v.mp4", SegmentationMode.adaptive())
    assert [s.start_time for s in result.scenes] == [0.0, 3.0]
    _assert_contiguous(result, 10.0)


def test_adaptive_cut_in_last_second_is_dropped(settings, cuts_factory):
    """A cut leaving a tail shorter than min_scene_len does not create a micro-scene."""
    factory = cuts_factory([5.0, 9.5], duration=10.0)
    result = SceneSegmenter(settings, source_factory=factory).segment("v.mp4", SegmentationMode.adaptive())
    assert [s.start_time for s in result.scenes] == [0.0, 5.0]
    assert result.scenes[-1].end_time == 10.0


# --- fixed mode ---


def test_fixed_mode_ceil_scenes_with_short_final_slice(settings, flat_factory):
    """22s at D=5 gives ceil(22/5)=5 scenes, the last one [20, 22)."""
    factory = flat_factory(22.0)
    result = SceneSegmenter(settings, source_factory=factory).segment("v.mp4", SegmentationMode.fixed(5))
    assert len(result.scenes) == math.ceil(22.0 / 5)
    assert (result.scenes[-1].start_time, result.scenes[-1].end_time) == (20.0, 22.0)
    _assert_contiguous(result, 22.0)


def test_fixed_mode_tiny_remainder_merges_into_previous(settings, flat_factory):
    """20.1s at D=5: the 0.1s remainder merges, giving floor(20.1/5)=4 scenes."""
    factory = flat_factory(20.1)
    result = SceneSegmenter(settings, source_factory=factory).segment("v.mp4", SegmentationMode.fixed(5))
    assert len(result.scenes) == 4
    assert (result.scenes[-1].start_time, result.scenes[-1].end_time) == (15.0, 20.1)
    _assert_contiguous(result, 20.1)


def test_fixed_mode_still_computes_diff_timeline(settings, cuts_factory):
    """Fixed mode ignores cuts for boundaries but still returns the diff timeline."""
    factory = cuts_factory([3.0], duration=10.0)
    result = SceneSegmenter(settings, source_factory=factory).segment("v.mp4", SegmentationMode.fixed(5))
    assert [s.start_time for s in result.scenes] == [0.0, 5.0]
    assert len(result.diffs) == len(sample_timestamps(10.0, 0.5)) - 1
    assert max(d.diff_score for d in result.diffs) > 50


def test_fixed_mode_video_shorter_than_slice(settings, flat_factory):
    factory = flat_factory(3.0)
    result = SceneSegmenter(settings, source_factory=factory).segment("v.mp4", SegmentationMode.fixed(10))
    assert len(result.scenes) == 1
    assert result.scenes[0].end_time == 3.0


@pytest.mark.parametrize("mode", [SegmentationMode.adaptive(), SegmentationMode.fixed(8)])
@pytest.mark.parametrize("duration", [0.3, 7.0, 33.3])
def test_scenes_cover_whole_video(settings, cuts_factory, mode, duration):
    """For every mode and length, scenes are non-empty, ordered and contiguous over [0, duration)."""
    factory = cuts_factory([2.0, 11.0, 20.0], duration=duration)
    result = SceneSegmenter(settings, source_factory=factory).segment("v.mp4", mode)
    _assert_contiguous(result, duration)
    assert result.duration == duration
    assert result.mode == mode


# --- diff timeline ---


def test_diff_timeline_ordered_and_sized(settings, cuts_factory):
    """One diff per sample after the first, strictly increasing timestamps, non-negative scores."""
    factory = cuts_factory([4.0], duration=12.3)
    result = SceneSegmenter(settings, source_factory=factory).segment("v.mp4", SegmentationMode.adaptive())
    samples = sample_timestamps(12.3, settings.segmentation.sampling_interval_sec)
    assert len(result.diffs) == len(samples) - 1
    timestamps = [d.timestamp for d in result.diffs]
    assert timestamps == sorted(set(timestamps))
    assert timestamps == samples[1:]
    assert all(d.diff_score >= 0 for d in result.diffs)


def test_scan_requests_are_monotonic_and_on_cadence(settings, flat_factory):
    """The scan source sees exactly the sampling timestamps, in order."""
    factory = flat_factory(5.0)
    SceneSegmenter(settings, source_factory=factory).segment("v.mp4", SegmentationMode.adaptive())
    scan_sources = factory.sources(settings.segmentation.scan_width)
    assert len(scan_sources) == 1
    assert scan_sources[0].requests == sample_timestamps(5.0, 0.5)


def test_all_sources_closed(settings, cuts_factory):
    factory = cuts_factory([2.0], duration=6.0)
    SceneSegmenter(settings, source_factory=factory).segment("v.mp4", SegmentationMode.adaptive())
    assert factory.created
    assert all(source.closed for _, source in factory.created)


# --- thumbnails ---


def test_each_scene_gets_jpeg_thumbnail_at_midpoint(settings, cuts_factory):
    factory = cuts_factory([4.0], duration=10.0)
    result = SceneSegmenter(settings, source_factory=factory).segment("v.mp4", SegmentationMode.adaptive())
    assert all(s.thumbnail_data_url and s.thumbnail_data_url.startswith(DATA_URL_PREFIX) for s in result.scenes)
    thumb_sources = factory.sources(settings.thumbnail.source_width)
    assert len(thumb_sources) == 1
    assert thumb_sources[0].requests == [2.0, 7.0]


def test_thumbnail_failure_leaves_placeholder(settings, flat_factory):
    """A failed thumbnail decode keeps the scene, with thumbnail_data_url None; siblings unaffected."""
    factory = flat_factory(
        10.0,
        fail_at=lambda ts: ts < 5.0,
        fail_width=settings.thumbnail.source_width,
    )
    result = SceneSegmenter(settings, source_factory=factory).segment("v.mp4", SegmentationMode.fixed(5))
    assert len(result.scenes) == 2
    assert result.scenes[0].thumbnail_data_url is None
    assert result.scenes[1].thumbnail_data_url is not None


def test_thumbnail_source_open_failure_keeps_all_scenes(settings, flat_factory):
    inner = flat_factory(10.0)

    def factory(video, out_width):
        if out_width == settings.thumbnail.source_width:
            raise DecodeError("thumbnail decoder unavailable")
        return inner(video, out_width)

    result = SceneSegmenter(settings, source_factory=factory).segment("v.mp4", SegmentationMode.fixed(5))
    assert len(result.scenes) == 2
    assert all(s.thumbnail_data_url is None for s in result.scenes)


def test_parallel_thumbnails_use_one_source_per_worker(cuts_factory):
    settings = Settings(thumbnail=ThumbnailSettings(max_width=32, max_height=32, workers=3))
    factory = cuts_factory([2.0, 4.0, 6.0, 8.0], duration=10.0)
    result = SceneSegmenter(settings, source_factory=factory).segment("v.mp4", SegmentationMode.adaptive())
    assert len(result.scenes) == 5
    assert all(s.thumbnail_data_url is not None for s in result.scenes)
    thumb_sources = factory.sources(settings.thumbnail.source_width)
    assert len(thumb_sources) == 3
    requested = sorted(ts for s in thumb_sources for ts in s.requests)
    assert requested == [1.0, 3.0, 5.0, 7.0, 9.0]
    for source in thumb_sources:
        assert source.requests == sorted(source.requests)
        assert source.closed


def test_split_contiguous():
    assert _split_contiguous(5, 3) == [[0, 1], [2, 3], [4]]
    assert _split_contiguous(2, 4) == [[0], [1]]
    assert _split_contiguous(3, 1) == [[0, 1, 2]]


# --- progress ---


def test_progress_strictly_increasing_and_ends_at_100(settings, cuts_factory):
    factory = cuts_factory([3.0, 6.0], duration=9.0)
    seen: list[float] = []
    SceneSegmenter(settings, source_factory=factory).segment(
        "v.mp4", SegmentationMode.adaptive(), on_progress=seen.append
    )
    assert seen[-1] == 100.0
    assert all(0.0 <= p <= 100.0 for p in seen)
    assert all(b > a for a, b in zip(seen, seen[1:]))
    assert seen.count(100.0) == 1
    assert len(seen) >= len(sample_timestamps(9.0, 0.5))


def test_polled_progress_handle(settings, flat_factory):
    tracker = ProgressTracker()
    factory = flat_factory(4.0)
    SceneSegmenter(settings, source_factory=factory).segment(
        "v.mp4", SegmentationMode.adaptive(), progress=tracker
    )
    snap = tracker.snapshot()
    assert snap.status is ProgressStatus.complete
    assert snap.progress == 100.0


# --- cancellation and fatal errors ---


def test_cancel_mid_scan_raises_cancelled(settings, flat_factory):
    """check_interrupt returning True mid-scan raises Cancelled; progress never reaches 100."""
    factory = flat_factory(10.0)
    calls = {"n": 0}

    def check_interrupt() -> bool:
        calls["n"] += 1
        return calls["n"] > 5

    seen: list[float] = []
    tracker = ProgressTracker(seen.append)
    with pytest.raises(Cancelled) as exc_info:
        SceneSegmenter(settings, source_factory=factory).segment(
            "v.mp4", SegmentationMode.adaptive(), check_interrupt=check_interrupt, progress=tracker
        )
    assert exc_info.value.frame_index == 5
    assert exc_info.value.timestamp == 2.5
    assert 100.0 not in seen
    assert tracker.status is ProgressStatus.error
    scan_source = factory.sources(settings.segmentation.scan_width)[0]
    assert len(scan_source.requests) == 5
    assert scan_source.closed


def test_cancel_before_first_sample(settings, flat_factory):
    factory = flat_factory(10.0)
    with pytest.raises(Cancelled):
        SceneSegmenter(settings, source_factory=factory).segment(
            "v.mp4", SegmentationMode.adaptive(), check_interrupt=lambda: True
        )
    assert factory.sources(settings.segmentation.scan_width)[0].requests == []


def test_decode_error_during_scan_is_fatal(settings, flat_factory):
    """A DecodeError while scanning aborts the whole call: no result, no thumbnails attempted."""
    factory = flat_factory(10.0, fail_at=lambda ts: ts >= 4.0)
    seen: list[float] = []
    with pytest.raises(DecodeError) as exc_info:
        SceneSegmenter(settings, source_factory=factory).segment(
            "v.mp4", SegmentationMode.adaptive(), on_progress=seen.append
        )
    assert exc_info.value.timestamp == 4.0
    assert "timestamp=4.000s" in str(exc_info.value)
    assert 100.0 not in seen
    assert factory.sources(settings.thumbnail.source_width) == []


def test_zero_duration_is_decode_error(settings):
    factory = SourceFactory(0.0, flat_color_at())
    with pytest.raises(DecodeError, match="duration"):
        SceneSegmenter(settings, source_factory=factory).segment("v.mp4", SegmentationMode.adaptive())


def test_seek_error_propagates(settings):
    """A source that reports a longer duration than it can serve fails with SeekError."""

    class ShortSource(SourceFactory):
        def __call__(self, video, out_width):
            source = super().__call__(video, out_width)
            source._duration = 2.0
            source.duration = lambda: 10.0  # type: ignore[method-assign]
            return source

    factory = ShortSource(10.0, flat_color_at())
    with pytest.raises(SeekError):
        SceneSegmenter(settings, source_factory=factory).segment("v.mp4", SegmentationMode.adaptive())


# --- input handling ---


def test_bytes_input_spooled_once_and_removed(settings, flat_factory):
    inner = flat_factory(3.0)
    seen_paths: list[Path] = []

    def factory(video, out_width):
        assert isinstance(video, Path)
        assert video.read_bytes() == b"fake-video-bytes"
        seen_paths.append(video)
        return inner(video, out_width)

    result = SceneSegmenter(settings, source_factory=factory).segment(
        b"fake-video-bytes", SegmentationMode.adaptive()
    )
    assert len(result.scenes) == 1
    assert len(set(seen_paths)) == 1
    assert not seen_paths[0].exists()


def test_empty_bytes_is_decode_error(settings, flat_factory):
    with pytest.raises(DecodeError, match="empty"):
        SceneSegmenter(settings, source_factory=flat_factory()).segment(b"", SegmentationMode.adaptive())


def test_result_mode_and_json_export(settings, cuts_factory):
    factory = cuts_factory([5.0], duration=10.0)
    result = SceneSegmenter(settings, source_factory=factory).segment("v.mp4", SegmentationMode.adaptive())
    data = result.to_dict()
    assert data["mode"]["kind"] == ModeKind.adaptive.value
    assert set(data["scenes"][0]) == {"id", "startTime", "endTime", "thumbnailDataUrl"}
    assert set(data["diffs"][0]) == {"frameIndex", "timestamp", "diffScore"}


def test_slow_fade_is_one_boundary(settings):
    """A 2s black-to-white fade crosses the threshold on four consecutive samples but opens one scene."""

    def fade_at(ts):
        level = int(round(255 * min(1.0, max(0.0, (ts - 2.0) / 2.0))))
        return (level, level, level)

    factory = SourceFactory(10.0, fade_at)
    result = SceneSegmenter(settings, source_factory=factory).segment("v.mp4", SegmentationMode.adaptive())
    fade_scores = [d.diff_score for d in result.diffs if 2.0 < d.timestamp <= 4.0]
    assert len(fade_scores) == 4
    assert all(s > 20 for s in fade_scores)
    assert [s.start_time for s in result.scenes] == [0.0, 2.5]


def test_unexpected_error_marks_tracker_failed(settings, flat_factory):
    """Errors outside the segmentation taxonomy still propagate and leave the polled handle in error."""
    detector = MagicMock()
    detector.detect_boundaries.side_effect = RuntimeError("detector exploded")
    tracker = ProgressTracker()
    segmenter = SceneSegmenter(settings, source_factory=flat_factory(4.0), detector=detector)
    with pytest.raises(RuntimeError):
        segmenter.segment("v.mp4", SegmentationMode.adaptive(), progress=tracker)
    snap = tracker.snapshot()
    assert snap.status is ProgressStatus.error
    assert snap.message == "detector exploded"
    assert snap.progress < 100.0


def test_callback_and_tracker_together_rejected(settings, flat_factory):
    segmenter = SceneSegmenter(settings, source_factory=flat_factory(4.0))
    with pytest.raises(ValueError, match="not both"):
        segmenter.segment(
            "v.mp4", SegmentationMode.adaptive(), on_progress=lambda p: None, progress=ProgressTracker()
        )
