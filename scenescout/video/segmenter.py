"""SceneSegmenter: scan at a fixed cadence, decide boundaries (adaptive or fixed), thumbnail each scene."""

from __future__ import annotations

import logging
import tempfile
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Union

from scenescout.core.config import SegmentationSettings, Settings, ThumbnailSettings, get_config
from scenescout.models.entities import (
    SCENE_ID_BASE,
    FrameDiff,
    ModeKind,
    Scene,
    SegmentationMode,
    SegmentationResult,
)
from scenescout.video.cut_detector import CutDetector
from scenescout.video.diff_scorer import DiffScorer
from scenescout.video.errors import Cancelled, DecodeError, SegmentationError, ThumbnailError
from scenescout.video.fixed_slicer import slice_fixed
from scenescout.video.frame_source import FrameSource, open_frame_source
from scenescout.video.progress import ProgressTracker
from scenescout.video.thumbnail import ThumbnailExtractor
from scenescout.video.timeline import build_windows, sample_timestamps

_log = logging.getLogger(__name__)

VideoInput = Union[str, Path, bytes]
SourceFactory = Callable[[VideoInput, int], FrameSource]

# Scan covers 0..90 %, thumbnails 90..99.9 %; 100 is reported only once the result is assembled.
SCAN_PROGRESS_SHARE = 90.0
THUMBNAIL_PROGRESS_SHARE = 9.9


def _split_contiguous(count: int, parts: int) -> list[list[int]]:
    """Split range(count) into at most `parts` contiguous, non-empty index runs."""
    parts = max(1, min(parts, count))
    size, extra = divmod(count, parts)
    runs: list[list[int]] = []
    start = 0
    for p in range(parts):
        end = start + size + (1 if p < extra else 0)
        runs.append(list(range(start, end)))
        start = end
    return [r for r in runs if r]


@contextmanager
def _spooled(video: VideoInput) -> Iterator[VideoInput]:
    """Write raw bytes once to a temp file so the scan and thumbnail sources share it."""
    if not isinstance(video, (bytes, bytearray, memoryview)):
        yield video
        return
    if len(video) == 0:
        raise DecodeError("empty video input")
    with tempfile.TemporaryDirectory(prefix="scenescout_") as tmp_dir:
        path = Path(tmp_dir) / "input.video"
        path.write_bytes(bytes(video))
        yield path


class SceneSegmenter:
    """
    Orchestrates FrameSource + DiffScorer + (CutDetector | fixed slicing) + ThumbnailExtractor.

    Each segment() call owns its own frame sources and diff accumulator; nothing mutable is
    shared between calls, so one SceneSegmenter may serve many videos.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        source_factory: SourceFactory | None = None,
        scorer: DiffScorer | None = None,
        detector: CutDetector | None = None,
    ) -> None:
        cfg = settings or get_config()
        self._seg: SegmentationSettings = cfg.segmentation
        self._thumb: ThumbnailSettings = cfg.thumbnail
        self._source_factory = source_factory or self._open_ffmpeg_source
        self._scorer = scorer or DiffScorer(self._seg.grid_width, self._seg.grid_height)
        self._detector = detector or CutDetector(
            baseline_percentile=self._seg.baseline_percentile,
            threshold_multiplier=self._seg.threshold_multiplier,
            threshold_margin=self._seg.threshold_margin,
            min_scene_len_sec=self._seg.min_scene_len_sec,
        )

    def _open_ffmpeg_source(self, video: VideoInput, out_width: int) -> FrameSource:
        return open_frame_source(
            video,
            out_width=out_width,
            seek_gap_sec=self._seg.seek_gap_sec,
            hwaccel=self._seg.hwaccel,
        )

    def segment(
        self,
        video: VideoInput,
        mode: SegmentationMode,
        on_progress: Callable[[float], None] | None = None,
        *,
        check_interrupt: Callable[[], bool] | None = None,
        progress: ProgressTracker | None = None,
    ) -> SegmentationResult:
        """
        Segment a video into contiguous scenes and return scenes plus the diff timeline.

        Progress is reported through `progress` when given (a polled handle), otherwise through
        `on_progress` (passing both is a ValueError); values strictly increase and reach 100 only
        on success. Any failure leaves the tracker in the error state.
        If check_interrupt is set and returns True between samples (or between thumbnails),
        raises Cancelled and no result is returned. Scan-phase DecodeError / SeekError abort
        the whole call; a failed thumbnail leaves that scene's thumbnail_data_url as None.
        """
        if progress is not None and on_progress is not None:
            raise ValueError("pass either on_progress or a progress tracker, not both")
        tracker = progress if progress is not None else ProgressTracker(on_progress)
        tracker.start(f"segmenting ({mode.describe()})")
        started = time.monotonic()
        try:
            with _spooled(video) as spooled:
                result = self._segment(spooled, mode, tracker, check_interrupt)
        except Cancelled as e:
            _log.info("Segmentation cancelled: %s", e)
            tracker.fail("cancelled")
            raise
        except SegmentationError as e:
            _log.error("Segmentation failed: %s", e)
            tracker.fail(str(e))
            raise
        except BaseException as e:
            _log.error("Segmentation aborted: %r", e)
            tracker.fail(str(e) or type(e).__name__)
            raise
        tracker.complete()
        _log.info(
            "Segmented %.2fs video into %d scenes (%s, %d diffs) in %.2fs",
            result.duration,
            len(result.scenes),
            mode.describe(),
            len(result.diffs),
            time.monotonic() - started,
        )
        return result

    def _segment(
        self,
        video: VideoInput,
        mode: SegmentationMode,
        tracker: ProgressTracker,
        check_interrupt: Callable[[], bool] | None,
    ) -> SegmentationResult:
        starts: list[float] | None = None
        with self._source_factory(video, self._seg.scan_width) as source:
            duration = source.duration()
            if not duration > 0:
                raise DecodeError(f"video has no usable duration ({duration!r})")
            if mode.kind is ModeKind.fixed:
                assert mode.duration_sec is not None
                starts = slice_fixed(
                    duration, mode.duration_sec, min_remainder_sec=self._seg.min_remainder_sec
                )
            diffs = self.scan(source, duration, tracker, check_interrupt)

        if starts is None:
            starts = self._detector.detect_boundaries(diffs, duration)
        windows = build_windows(starts, duration)
        thumbnails = self._extract_thumbnails(video, windows, tracker, check_interrupt)
        scenes = [
            Scene(
                id=SCENE_ID_BASE + i,
                start_time=start,
                end_time=end,
                thumbnail_data_url=thumbnails[i],
            )
            for i, (start, end) in enumerate(windows)
        ]
        return SegmentationResult(scenes=scenes, diffs=diffs, duration=duration, mode=mode)

    def scan(
        self,
        source: FrameSource,
        duration: float,
        tracker: ProgressTracker | None = None,
        check_interrupt: Callable[[], bool] | None = None,
    ) -> list[FrameDiff]:
        """
        Sample the source every sampling_interval_sec from 0 to duration and build the diff timeline.

        Only the previous sample's grid is kept between iterations. One FrameDiff per sample
        after the first, stamped with the sampling time.
        """
        timestamps = sample_timestamps(duration, self._seg.sampling_interval_sec)
        total = len(timestamps)
        diffs: list[FrameDiff] = []
        prev_grid = None
        for i, ts in enumerate(timestamps):
            if check_interrupt is not None and check_interrupt():
                raise Cancelled("segmentation cancelled", timestamp=ts, frame_index=i)
            sample = source.frame_at(ts)
            grid = self._scorer.grid(sample.pixels)
            if prev_grid is not None:
                diffs.append(
                    FrameDiff(
                        frame_index=sample.frame_index,
                        timestamp=ts,
                        diff_score=self._scorer.score_grids(prev_grid, grid),
                    )
                )
            prev_grid = grid
            if tracker is not None:
                tracker.update(SCAN_PROGRESS_SHARE * (i + 1) / total)
        _log.debug("Scanned %d samples (%d diffs) over %.2fs", total, len(diffs), duration)
        return diffs

    def _open_thumbnail_source(self, video: VideoInput) -> FrameSource | None:
        try:
            return self._source_factory(video, self._thumb.source_width)
        except DecodeError as e:
            _log.warning("Could not open thumbnail decoder; scenes keep placeholders: %s", e)
            return None

    def _thumbnail_or_placeholder(
        self, extractor: ThumbnailExtractor, index: int, start: float, end: float
    ) -> str | None:
        try:
            return extractor.extract(start, end)
        except ThumbnailError as e:
            _log.warning("Thumbnail failed for scene %d [%.3f, %.3f): %s", index, start, end, e)
            return None

    def _new_extractor(self, source: FrameSource) -> ThumbnailExtractor:
        return ThumbnailExtractor(
            source,
            max_size=(self._thumb.max_width, self._thumb.max_height),
            quality=self._thumb.jpeg_quality,
        )

    def _thumbnail_progress(self, done: int, total: int) -> float:
        return SCAN_PROGRESS_SHARE + THUMBNAIL_PROGRESS_SHARE * done / total

    def _extract_thumbnails(
        self,
        video: VideoInput,
        windows: list[tuple[float, float]],
        tracker: ProgressTracker,
        check_interrupt: Callable[[], bool] | None,
    ) -> list[str | None]:
        workers = min(self._thumb.workers, len(windows))
        if workers > 1:
            return self._extract_thumbnails_parallel(video, windows, workers, tracker, check_interrupt)

        results: list[str | None] = [None] * len(windows)
        source = self._open_thumbnail_source(video)
        if source is None:
            return results
        with source:
            extractor = self._new_extractor(source)
            for i, (start, end) in enumerate(windows):
                if check_interrupt is not None and check_interrupt():
                    raise Cancelled("segmentation cancelled during thumbnails", timestamp=start)
                results[i] = self._thumbnail_or_placeholder(extractor, i, start, end)
                tracker.update(self._thumbnail_progress(i + 1, len(windows)))
        return results

    def _extract_thumbnails_parallel(
        self,
        video: VideoInput,
        windows: list[tuple[float, float]],
        workers: int,
        tracker: ProgressTracker,
        check_interrupt: Callable[[], bool] | None,
    ) -> list[str | None]:
        """
        One FrameSource per worker, each over a contiguous time-ordered run of scenes.

        Progress and check_interrupt are handled on the calling thread as runs finish; workers
        stop between scenes once a stop is requested.
        """
        results: list[str | None] = [None] * len(windows)
        stop = threading.Event()

        def run(indices: list[int]) -> dict[int, str | None]:
            out: dict[int, str | None] = {}
            source = self._open_thumbnail_source(video)
            if source is None:
                return {i: None for i in indices}
            with source:
                extractor = self._new_extractor(source)
                for i in indices:
                    if stop.is_set():
                        break
                    start, end = windows[i]
                    out[i] = self._thumbnail_or_placeholder(extractor, i, start, end)
            return out

        done = 0
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="thumbnail") as pool:
            futures = [pool.submit(run, run_indices) for run_indices in _split_contiguous(len(windows), workers)]
            try:
                for future in as_completed(futures):
                    for i, url in future.result().items():
                        results[i] = url
                        done += 1
                    tracker.update(self._thumbnail_progress(done, len(windows)))
                    if check_interrupt is not None and check_interrupt():
                        raise Cancelled("segmentation cancelled during thumbnails")
            except BaseException:
                stop.set()
                raise
        return results


def segment_video(
    video: VideoInput,
    mode: SegmentationMode,
    on_progress: Callable[[float], None] | None = None,
    *,
    check_interrupt: Callable[[], bool] | None = None,
    settings: Settings | None = None,
) -> SegmentationResult:
    """Segment with an FFmpeg-backed SceneSegmenter built from settings (or the global config)."""
    return SceneSegmenter(settings).segment(
        video, mode, on_progress, check_interrupt=check_interrupt
    )
