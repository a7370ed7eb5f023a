"""Scene thumbnails: decode the window midpoint, fit into max size (Pillow LANCZOS), JPEG data URL."""

import base64
import logging
from io import BytesIO

import numpy as np
from PIL import Image

from scenescout.video.errors import SegmentationError, ThumbnailError
from scenescout.video.frame_source import FrameSource

_log = logging.getLogger(__name__)

THUMBNAIL_MAX_SIZE = (480, 480)
JPEG_QUALITY = 80
DATA_URL_PREFIX = "data:image/jpeg;base64,"
# Keeps the representative time strictly inside [start, end).
_END_MARGIN_SEC = 1e-3


def representative_timestamp(start: float, end: float) -> float:
    """Midpoint of [start, end), clamped into the window."""
    if end <= start:
        raise ValueError(f"empty window [{start}, {end})")
    mid = start + (end - start) / 2.0
    upper = max(start, end - _END_MARGIN_SEC)
    return min(max(mid, start), upper)


def encode_data_url(
    pixels: np.ndarray,
    *,
    max_size: tuple[int, int] = THUMBNAIL_MAX_SIZE,
    quality: int = JPEG_QUALITY,
) -> str:
    """Encode an (H, W, 3) RGB frame as a self-contained JPEG data URL no larger than max_size."""
    img = Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8))
    img.thumbnail(max_size, Image.Resampling.LANCZOS)
    buffered = BytesIO()
    img.save(buffered, format="JPEG", quality=quality, optimize=True)
    b64 = base64.b64encode(buffered.getvalue()).decode("ascii")
    return f"{DATA_URL_PREFIX}{b64}"


def decode_data_url(data_url: str) -> Image.Image:
    """Inverse of encode_data_url (used for inspection/export)."""
    if not data_url.startswith(DATA_URL_PREFIX):
        raise ValueError("not a JPEG data URL")
    img = Image.open(BytesIO(base64.b64decode(data_url[len(DATA_URL_PREFIX):])))
    img.load()
    return img


class ThumbnailExtractor:
    """
    Renders one representative frame per scene window.

    Uses its own FrameSource; windows should be requested in increasing start order so the
    source can decode forward instead of re-seeking.
    """

    def __init__(
        self,
        source: FrameSource,
        *,
        max_size: tuple[int, int] = THUMBNAIL_MAX_SIZE,
        quality: int = JPEG_QUALITY,
    ) -> None:
        self._source = source
        self._max_size = max_size
        self._quality = quality

    def extract(self, start: float, end: float) -> str:
        """Return a JPEG data URL for the window. Raises ThumbnailError on decode/encode failure."""
        ts = representative_timestamp(start, end)
        try:
            sample = self._source.frame_at(ts)
        except SegmentationError as e:
            raise ThumbnailError(f"could not decode thumbnail frame: {e.message}", timestamp=ts) from e
        try:
            return encode_data_url(sample.pixels, max_size=self._max_size, quality=self._quality)
        except (OSError, ValueError) as e:
            raise ThumbnailError(
                f"could not encode thumbnail: {e}", timestamp=ts, frame_index=sample.frame_index
            ) from e
