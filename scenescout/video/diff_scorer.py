"""Frame dissimilarity: area-downsample to a fixed RGB grid, mean absolute difference scaled to 0-100."""

import cv2
import numpy as np

from scenescout.models.entities import FrameSample

GRID_WIDTH = 32
GRID_HEIGHT = 18
SCORE_MAX = 100.0


def _to_grid(pixels: np.ndarray, grid_size: tuple[int, int]) -> np.ndarray:
    """Downsample an (H, W, 3) uint8 RGB frame to (grid_h, grid_w, 3) float32 with INTER_AREA."""
    if pixels.ndim != 3 or pixels.shape[2] != 3:
        raise ValueError(f"expected (height, width, 3) RGB pixels, got shape {pixels.shape}")
    if pixels.shape[0] == 0 or pixels.shape[1] == 0:
        raise ValueError("empty frame")
    grid = cv2.resize(pixels, grid_size, interpolation=cv2.INTER_AREA)
    return grid.astype(np.float32)


class DiffScorer:
    """
    Deterministic, resolution-independent frame difference.

    Both frames are reduced to the same coarse grid before comparing, so cost does not depend
    on native resolution and thresholds stay comparable across videos. Identical frames score 0,
    black vs. white scores 100.
    """

    def __init__(self, grid_width: int = GRID_WIDTH, grid_height: int = GRID_HEIGHT) -> None:
        if grid_width <= 0 or grid_height <= 0:
            raise ValueError("grid dimensions must be positive")
        self._grid_size = (grid_width, grid_height)

    @property
    def grid_size(self) -> tuple[int, int]:
        """(width, height) of the comparison grid."""
        return self._grid_size

    def grid(self, pixels: np.ndarray) -> np.ndarray:
        return _to_grid(pixels, self._grid_size)

    def score_grids(self, prev_grid: np.ndarray, curr_grid: np.ndarray) -> float:
        if prev_grid.shape != curr_grid.shape:
            raise ValueError(f"grid shape mismatch: {prev_grid.shape} vs {curr_grid.shape}")
        mad = float(np.mean(np.abs(curr_grid - prev_grid)))
        return min(SCORE_MAX, mad / 255.0 * SCORE_MAX)

    def score(self, prev: FrameSample, curr: FrameSample) -> float:
        """Score in [0, 100] between two decoded frames (any resolutions)."""
        return self.score_grids(self.grid(prev.pixels), self.grid(curr.pixels))
