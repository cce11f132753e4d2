"""Full-frame object detector: inference, thresholding, overlap suppression, depth.

Wraps an InferenceEngine and turns its raw boxes into DetectedObject values
with fresh identities.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from vision_shared.events.schemas import DetectedObject
from vision_shared.logging import get_logger

from detection.config import DetectionConfig
from detection.depth import DepthResolver
from detection.frames import CameraFrame
from detection.geometry import to_display_rect
from detection.inference import InferenceEngine, RawDetection

log = get_logger(__name__)


@dataclass(frozen=True)
class DetectionResult:
    """Outcome of one detection cycle."""

    objects: tuple[DetectedObject, ...]
    latency: float  # seconds from dispatch to result
    frame: CameraFrame | None = None  # frame the objects were detected on


def filter_by_confidence(
    candidates: Sequence[RawDetection], threshold: float
) -> list[RawDetection]:
    return [c for c in candidates if c.score >= threshold]


def suppress_overlaps(
    candidates: Sequence[RawDetection], iou_threshold: float
) -> list[RawDetection]:
    """Greedy class-agnostic non-max suppression.

    Candidates are visited by descending score; one is dropped when its IOU
    with an already kept box exceeds ``iou_threshold``.
    """
    kept: list[RawDetection] = []
    for cand in sorted(candidates, key=lambda c: c.score, reverse=True):
        if all(cand.rect.iou(k.rect) <= iou_threshold for k in kept):
            kept.append(cand)
    return kept


class ObjectDetector:
    """Synchronous detection pipeline for one frame.

    Args:
        engine: Black-box inference engine.
        config: Thresholds, depth and display settings.
        depth_resolver: Resolver used when distance recording is enabled.
    """

    def __init__(
        self,
        engine: InferenceEngine,
        config: DetectionConfig,
        depth_resolver: DepthResolver | None = None,
    ) -> None:
        self._engine = engine
        self._cfg = config
        self._depth = depth_resolver or DepthResolver(
            depth_range=config.depth_range,
            sample_ratio=config.depth_sample_ratio,
        )

    def detect(self, frame: CameraFrame) -> tuple[DetectedObject, ...]:
        """Run one detection cycle.

        Raises:
            DetectionError: the engine failed to load or to run.
        """
        raw = self._engine.infer(frame.video)
        candidates = filter_by_confidence(raw, self._cfg.confidence_threshold)
        kept = suppress_overlaps(candidates, self._cfg.iou_threshold)

        use_depth = self._cfg.distance_recording_enabled and frame.depth is not None
        display_w, display_h = self._cfg.display_size or (frame.width, frame.height)

        objects = tuple(
            DetectedObject(
                label=r.label,
                confidence=min(1.0, max(0.0, r.score)),
                depth=self._depth.resolve(r.rect, frame.depth) if use_depth else None,
                bounding_box=r.rect,
                display_box=to_display_rect(r.rect, display_w, display_h),
            )
            for r in kept
        )
        log.debug(
            "detection_cycle",
            raw=len(raw),
            above_threshold=len(candidates),
            kept=len(objects),
        )
        return objects
