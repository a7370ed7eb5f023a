"""Segmentation error taxonomy. Every error carries the timestamp / frame index it was raised at."""


class SegmentationError(Exception):
    """Base for all engine errors; str() includes timestamp and frame index when known."""

    def __init__(
        self,
        message: str,
        *,
        timestamp: float | None = None,
        frame_index: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.timestamp = timestamp
        self.frame_index = frame_index

    def __str__(self) -> str:
        context: list[str] = []
        if self.timestamp is not None:
            context.append(f"timestamp={self.timestamp:.3f}s")
        if self.frame_index is not None:
            context.append(f"frame_index={self.frame_index}")
        if not context:
            return self.message
        return f"{self.message} ({', '.join(context)})"


class DecodeError(SegmentationError):
    """Container unreadable, codec unsupported, or no frame could be decoded. Fatal."""

    pass


class SyncError(DecodeError):
    """Raised when PTS for the current frame is not received from stderr within the timeout (FFmpeg hung or stderr thread died)."""

    pass


class SeekError(SegmentationError):
    """Requested timestamp is outside [0, duration]. Fatal; indicates a sampling bug."""

    pass


class ThumbnailError(SegmentationError):
    """Thumbnail decode/encode failed for one scene. Non-fatal: the scene keeps a placeholder."""

    pass


class Cancelled(SegmentationError):
    """Caller requested early termination between samples."""

    pass
