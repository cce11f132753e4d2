"""Inference engine boundary and its ultralytics YOLO implementation.

The engine is a black box: frame in, raw labelled boxes out. Thresholding,
overlap suppression and depth live in ``detection.detector``.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Protocol

import numpy as np
from ultralytics import YOLO

from vision_shared.events.schemas import Rect
from vision_shared.logging import get_logger

from detection.errors import InferenceFailure, ModelLoadFailure
from detection.geometry import pixels_to_normalized

log = get_logger(__name__)


@dataclass(frozen=True)
class RawDetection:
    """One candidate box straight from the engine."""

    label: str
    score: float
    rect: Rect  # normalized, origin bottom-left


class InferenceEngine(Protocol):
    def infer(self, video: np.ndarray) -> list[RawDetection]:
        ...


def _parse_result(result, width: int, height: int) -> list[RawDetection]:
    """Parse a single YOLO result into RawDetection objects."""
    raw: list[RawDetection] = []

    if result.boxes is None or len(result.boxes) == 0:
        return raw

    boxes_xyxy = result.boxes.xyxy.cpu().numpy()
    confidences = result.boxes.conf.cpu().numpy()
    classes = result.boxes.cls.cpu().numpy().astype(int)
    names = result.names or {}

    for i in range(len(boxes_xyxy)):
        x1, y1, x2, y2 = boxes_xyxy[i]
        raw.append(
            RawDetection(
                label=str(names.get(int(classes[i]), classes[i])),
                score=float(confidences[i]),
                rect=pixels_to_normalized(
                    float(x1), float(y1), float(x2), float(y2), width, height
                ),
            )
        )
    return raw


class YoloInferenceEngine:
    """Loads a YOLO detection model once and runs it on BGR frames.

    The model is loaded on first use. A failed load is remembered: every
    later call raises the same ModelLoadFailure without retrying.

    Args:
        model_name: Model filename/path (e.g. "yolo11n.pt").
            ultralytics auto-downloads if not found locally.
        device: Torch device string ("cpu", "cuda", "mps").
        confidence: Score floor passed to the model's own post-processing.
        iou: Overlap threshold passed to the model's own NMS.
    """

    def __init__(
        self,
        model_name: str = "yolo11n.pt",
        device: str = "cpu",
        confidence: float = 0.5,
        iou: float = 0.6,
    ) -> None:
        self._model_name = model_name
        self._device = device
        self._confidence = confidence
        self._iou = iou
        self._model: YOLO | None = None
        self._load_error: ModelLoadFailure | None = None
        self._load_lock = threading.Lock()

    def load(self) -> YOLO:
        with self._load_lock:
            if self._load_error is not None:
                raise self._load_error
            if self._model is None:
                log.info("model_loading", model=self._model_name, device=self._device)
                try:
                    self._model = YOLO(self._model_name)
                except Exception as exc:
                    self._load_error = ModelLoadFailure(
                        f"cannot load model {self._model_name!r}: {exc}"
                    )
                    log.error("model_load_failed", model=self._model_name, error=str(exc))
                    raise self._load_error from exc
                log.info("model_ready", model=self._model_name, device=self._device)
            return self._model

    def infer(self, video: np.ndarray) -> list[RawDetection]:
        """Run the model on one HxWx3 uint8 BGR frame."""
        model = self.load()
        h, w = video.shape[:2]
        try:
            results = model.predict(
                video,
                conf=self._confidence,
                iou=self._iou,
                agnostic_nms=True,
                device=self._device,
                verbose=False,
            )
        except Exception as exc:
            raise InferenceFailure(str(exc)) from exc

        raw: list[RawDetection] = []
        for result in results:
            raw.extend(_parse_result(result, w, h))
        return raw
