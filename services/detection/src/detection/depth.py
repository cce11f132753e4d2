"""Depth resolution: approximate distance to a detected object from a depth map."""
from __future__ import annotations

import numpy as np

from vision_shared.events.schemas import Rect

from detection.geometry import normalized_to_pixels, scale_about_center


class DepthResolver:
    """Median depth over the central part of a box.

    Samples that are non-finite, non-positive or outside ``depth_range`` are
    treated as occluded/invalid. Missing data always yields ``None``.

    Args:
        depth_range: Valid (min, max) distance in metres.
        sample_ratio: Fraction of the box width/height, centred, that is sampled.
    """

    def __init__(
        self,
        depth_range: tuple[float, float] = (0.05, 20.0),
        sample_ratio: float = 0.5,
    ) -> None:
        self._min_depth, self._max_depth = depth_range
        self._sample_ratio = sample_ratio

    def resolve(self, box: Rect, depth: np.ndarray | None) -> float | None:
        """Return the median valid depth inside ``box`` or None.

        Args:
            box: Normalized box, origin bottom-left.
            depth: HxW depth map in metres (row 0 at the top of the image).
        """
        if depth is None:
            return None
        depth = np.asarray(depth)
        if depth.ndim == 3 and depth.shape[2] == 1:
            depth = depth[:, :, 0]
        if depth.ndim != 2 or depth.size == 0:
            return None

        h, w = depth.shape
        region = self._region(depth, scale_about_center(box, self._sample_ratio), w, h)
        if region is None:
            region = self._region(depth, box, w, h)
        if region is None:
            return None

        samples = region.astype(np.float32, copy=False)
        valid = samples[
            np.isfinite(samples)
            & (samples > 0)
            & (samples >= self._min_depth)
            & (samples <= self._max_depth)
        ]
        if valid.size == 0:
            return None
        return float(np.median(valid))

    @staticmethod
    def _region(depth: np.ndarray, box: Rect, width: int, height: int) -> np.ndarray | None:
        x1, y1, x2, y2 = normalized_to_pixels(box, width, height)
        if x2 <= x1 or y2 <= y1:
            return None
        return depth[y1:y2, x1:x2]
