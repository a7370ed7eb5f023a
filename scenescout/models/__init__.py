"""Segmentation data contracts (frame samples, diff timeline, scenes, result)."""

from scenescout.models.entities import (
    FrameDiff,
    FrameSample,
    ModeKind,
    Scene,
    SegmentationMode,
    SegmentationResult,
)

__all__ = [
    "FrameDiff",
    "FrameSample",
    "ModeKind",
    "Scene",
    "SegmentationMode",
    "SegmentationResult",
]
