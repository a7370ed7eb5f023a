"""Scene segmentation engine (FFmpeg frame source, diff scoring, cut detection, thumbnails)."""

from scenescout.video.cut_detector import CutDetector
from scenescout.video.diff_scorer import DiffScorer
from scenescout.video.errors import (
    Cancelled,
    DecodeError,
    SeekError,
    SegmentationError,
    SyncError,
    ThumbnailError,
)
from scenescout.video.fixed_slicer import slice_fixed
from scenescout.video.frame_source import FFmpegFrameSource, FrameSource, open_frame_source
from scenescout.video.progress import ProgressStatus, ProgressTracker
from scenescout.video.segmenter import SceneSegmenter, segment_video
from scenescout.video.thumbnail import ThumbnailExtractor

__all__ = [
    "Cancelled",
    "CutDetector",
    "DecodeError",
    "DiffScorer",
    "FFmpegFrameSource",
    "FrameSource",
    "ProgressStatus",
    "ProgressTracker",
    "SceneSegmenter",
    "SeekError",
    "SegmentationError",
    "SyncError",
    "ThumbnailError",
    "ThumbnailExtractor",
    "open_frame_source",
    "segment_video",
    "slice_fixed",
]
