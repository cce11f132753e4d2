"""Detection service configuration."""
from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum

from detection.errors import ConfigurationInvalid


class ComputeUnit(str, Enum):
    """Which hardware the inference engine may use."""

    ALL = "all"
    CPU_ONLY = "cpu_only"
    CPU_AND_GPU = "cpu_and_gpu"


@dataclass(frozen=True)
class DetectionConfig:
    """Immutable configuration for one detection service instance."""

    # Detection
    confidence_threshold: float = 0.5
    iou_threshold: float = 0.6
    object_detection_rate: float = 1.0  # seconds between detection cycles
    detectable_class_labels: frozenset[str] | None = None
    distance_recording_enabled: bool = False
    compute_unit: ComputeUnit = ComputeUnit.ALL
    model_name: str = "yolo11n.pt"

    # Tracking
    object_tracking_enabled: bool = False
    object_tracking_confidence_threshold: float = 0.5
    tracking_search_scale: float = 3.0  # search window size relative to the box

    # Presentation space for display boxes; None = frame pixel space
    display_size: tuple[float, float] | None = None

    # Depth sampling
    depth_range: tuple[float, float] = (0.05, 20.0)  # metres
    depth_sample_ratio: float = 0.5  # central fraction of the box that is sampled

    # Service wiring
    camera_id: str = "cam-01"
    redis_url: str = "redis://localhost:6379/0"
    publish_stream: bool = True
    stream_maxlen: int = 1000
    block_ms: int = 500

    def __post_init__(self) -> None:
        for name in (
            "confidence_threshold",
            "iou_threshold",
            "object_tracking_confidence_threshold",
        ):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationInvalid(f"{name} must be within [0, 1], got {value}")
        if self.object_detection_rate < 0:
            raise ConfigurationInvalid(
                f"object_detection_rate must be >= 0, got {self.object_detection_rate}"
            )
        if not 0.0 < self.depth_sample_ratio <= 1.0:
            raise ConfigurationInvalid(
                f"depth_sample_ratio must be within (0, 1], got {self.depth_sample_ratio}"
            )
        low, high = self.depth_range
        if low < 0 or high <= low:
            raise ConfigurationInvalid(f"depth_range must satisfy 0 <= min < max, got {self.depth_range}")
        if self.tracking_search_scale < 1.0:
            raise ConfigurationInvalid(
                f"tracking_search_scale must be >= 1, got {self.tracking_search_scale}"
            )
        if self.display_size is not None and min(self.display_size) <= 0:
            raise ConfigurationInvalid(f"display_size must be positive, got {self.display_size}")


def resolve_device(compute_unit: ComputeUnit) -> str:
    """Map a compute unit preference to a torch device string.

    ``DETECTION_DEVICE`` in the environment overrides the preference.
    """
    if os.environ.get("DETECTION_DEVICE"):
        return os.environ["DETECTION_DEVICE"]
    if compute_unit is ComputeUnit.CPU_ONLY:
        return "cpu"

    import torch

    if torch.cuda.is_available():
        return "cuda"
    if compute_unit is ComputeUnit.ALL and hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
        return "mps"
    return "cpu"


def build_config(settings) -> DetectionConfig:
    """Build DetectionConfig from shared vision_shared.settings.Settings."""
    try:
        compute_unit = ComputeUnit(settings.compute_unit.lower())
    except ValueError as exc:
        raise ConfigurationInvalid(f"unknown compute_unit {settings.compute_unit!r}") from exc

    return DetectionConfig(
        confidence_threshold=settings.confidence_threshold,
        iou_threshold=settings.iou_threshold,
        object_detection_rate=settings.object_detection_rate,
        detectable_class_labels=settings.class_label_set,
        distance_recording_enabled=settings.distance_recording_enabled,
        compute_unit=compute_unit,
        model_name=settings.detection_model,
        object_tracking_enabled=settings.object_tracking_enabled,
        object_tracking_confidence_threshold=settings.object_tracking_confidence_threshold,
        camera_id=settings.camera_id,
        redis_url=settings.redis_url,
        publish_stream=settings.publish_detections,
    )
