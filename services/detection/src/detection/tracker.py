"""Lightweight object tracking between detection cycles.

Each seeded object gets its own appearance template. Every update searches a
window around the object's last box with normalized cross-correlation and
moves the box to the best match. Items whose match score falls below the
continuation threshold are dropped and never come back.

Idle --start_tracking--> Active --stop_tracking / last item lost--> Idle
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence

import cv2
import numpy as np

from vision_shared.events.schemas import DetectedObject, Rect
from vision_shared.logging import get_logger

from detection.geometry import (
    normalized_to_pixels,
    pixels_to_normalized,
    scale_about_center,
    to_display_rect,
)

log = get_logger(__name__)

# Templates smaller than this (pixels per side) carry too little texture to match
_MIN_TEMPLATE_PX = 3


class ObjectTracker(Protocol):
    @property
    def is_tracking(self) -> bool:
        ...

    def start_tracking(self, seed: Sequence[DetectedObject], video: np.ndarray | None = None) -> None:
        ...

    def update(self, video: np.ndarray) -> tuple[DetectedObject, ...]:
        ...

    def stop_tracking(self) -> None:
        ...


@dataclass
class TrackedItem:
    """Tracking state for one object within a session."""

    obj: DetectedObject
    template: np.ndarray | None = None  # grayscale patch; None until first frame


def _to_gray(video: np.ndarray) -> np.ndarray:
    if video.ndim == 3 and video.shape[2] == 3:
        gray = cv2.cvtColor(video, cv2.COLOR_BGR2GRAY)
    elif video.ndim == 3:
        gray = video[:, :, 0]
    else:
        gray = video
    if gray.dtype != np.uint8:
        gray = gray.astype(np.float32)
    return np.ascontiguousarray(gray)


class TemplateTracker:
    """Template-matching tracker, one independent template per object.

    Args:
        confidence_threshold: Minimum match score for an item to stay tracked.
        search_scale: Search window size relative to the last box.
        display_size: Presentation space for display boxes; None = frame pixels.
    """

    def __init__(
        self,
        confidence_threshold: float = 0.5,
        search_scale: float = 3.0,
        display_size: tuple[float, float] | None = None,
    ) -> None:
        self._threshold = confidence_threshold
        self._search_scale = search_scale
        self._display_size = display_size
        self._items: list[TrackedItem] = []
        self._active = False
        self.sessions = 0

    @property
    def is_tracking(self) -> bool:
        return self._active

    @property
    def tracked_count(self) -> int:
        return len(self._items)

    def start_tracking(self, seed: Sequence[DetectedObject], video: np.ndarray | None = None) -> None:
        """Begin a new session; any previous session is discarded.

        Args:
            seed: Objects to track, boxes as detected.
            video: The frame the seed boxes were detected on. Templates are cut
                from it; without it they are cut from the first updated frame.
        """
        self._items = [TrackedItem(obj=obj) for obj in seed]
        if video is not None:
            gray = _to_gray(video)
            for item in self._items:
                item.template = self._crop(gray, item.obj.bounding_box)
                if item.template is None:
                    log.debug("tracking_item_untrackable", label=item.obj.label)
            self._items = [item for item in self._items if item.template is not None]
        self._active = bool(self._items)
        self.sessions += 1
        log.debug("tracking_started", session=self.sessions, objects=len(self._items))

    def stop_tracking(self) -> None:
        if self._active:
            log.debug("tracking_stopped", session=self.sessions, objects=len(self._items))
        self._items = []
        self._active = False

    def update(self, video: np.ndarray) -> tuple[DetectedObject, ...]:
        """Advance every tracked item by one frame and return the survivors."""
        if not self._active:
            return ()

        gray = _to_gray(video)
        h, w = gray.shape[:2]
        display_w, display_h = self._display_size or (w, h)

        survivors: list[TrackedItem] = []
        for item in self._items:
            if item.template is None:
                # First frame of the session: remember what the object looks like
                item.template = self._crop(gray, item.obj.bounding_box)
                if item.template is None:
                    log.debug("tracking_item_untrackable", label=item.obj.label)
                    continue
                survivors.append(item)
                continue

            box, patch, score = self._step(gray, item)
            if box is None or score < self._threshold:
                log.debug(
                    "tracking_item_lost",
                    label=item.obj.label,
                    identity=str(item.obj.identity),
                    score=round(score, 3),
                )
                continue

            item.obj = item.obj.model_copy(
                update={
                    "bounding_box": box,
                    "display_box": to_display_rect(box, display_w, display_h),
                }
            )
            item.template = patch
            survivors.append(item)

        self._items = survivors
        if not survivors:
            self._active = False
            log.debug("tracking_session_ended", session=self.sessions)
        return tuple(item.obj for item in survivors)

    @staticmethod
    def _crop(gray: np.ndarray, box: Rect) -> np.ndarray | None:
        h, w = gray.shape[:2]
        x1, y1, x2, y2 = normalized_to_pixels(box, w, h)
        if x2 - x1 < _MIN_TEMPLATE_PX or y2 - y1 < _MIN_TEMPLATE_PX:
            return None
        return gray[y1:y2, x1:x2].copy()

    def _step(
        self, gray: np.ndarray, item: TrackedItem
    ) -> tuple[Rect | None, np.ndarray | None, float]:
        """Find the item's template near its last box; returns (box, patch, score)."""
        h, w = gray.shape[:2]
        th, tw = item.template.shape[:2]
        search = scale_about_center(item.obj.bounding_box, self._search_scale)
        sx1, sy1, sx2, sy2 = normalized_to_pixels(search, w, h)
        window = gray[sy1:sy2, sx1:sx2]
        if window.shape[0] < th or window.shape[1] < tw:
            return None, None, 0.0

        scores = cv2.matchTemplate(window, item.template, cv2.TM_CCOEFF_NORMED)
        _, max_val, _, (lx, ly) = cv2.minMaxLoc(scores)
        score = float(max_val) if np.isfinite(max_val) else 0.0

        x1, y1 = sx1 + lx, sy1 + ly
        box = pixels_to_normalized(x1, y1, x1 + tw, y1 + th, w, h)
        patch = window[ly:ly + th, lx:lx + tw].copy()
        return box, patch, score
