"""Pydantic v2 schemas shared by the detection service and its Redis Streams.

Stream naming convention: {domain}:{camera_id}
  frames:cam-01            — compressed frames (+ optional depth) from the camera side
  detections:cam-01        — merged, deduplicated detected-object snapshots
  detection_errors:cam-01  — errors relayed by the detection service
"""
from __future__ import annotations

from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True)


# ── Geometry ──────────────────────────────────────────────────────────────────

class Rect(_FrozenModel):
    """Axis-aligned rectangle given by its origin corner and size.

    The meaning of the origin depends on the coordinate space: normalized
    detection boxes use a bottom-left origin, display boxes a top-left one.
    """

    x: float
    y: float
    width: float
    height: float

    @property
    def min_x(self) -> float:
        return self.x

    @property
    def min_y(self) -> float:
        return self.y

    @property
    def max_x(self) -> float:
        return self.x + self.width

    @property
    def max_y(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)

    def intersection(self, other: Rect) -> float:
        """Area shared by both rectangles (0 if disjoint)."""
        w = min(self.max_x, other.max_x) - max(self.min_x, other.min_x)
        h = min(self.max_y, other.max_y) - max(self.min_y, other.min_y)
        if w <= 0 or h <= 0:
            return 0.0
        return w * h

    def iou(self, other: Rect) -> float:
        """Intersection-over-union in [0, 1]."""
        inter = self.intersection(other)
        union = self.area + other.area - inter
        return inter / union if union > 0 else 0.0


# ── Detection service output ──────────────────────────────────────────────────

class DetectedObject(_FrozenModel):
    """One object found by the detector, possibly moved along by the tracker.

    ``confidence`` is the detector score at creation; tracking only ever
    replaces the two boxes.
    """

    label: str
    confidence: float = Field(ge=0.0, le=1.0)
    depth: float | None = Field(
        default=None, ge=0.0, description="Distance to the object centre in metres"
    )
    bounding_box: Rect = Field(description="Normalized [0,1] box, origin bottom-left")
    display_box: Rect = Field(description="Box in presentation space, origin top-left")
    identity: UUID = Field(default_factory=uuid4)


# ── Camera side → Detection ───────────────────────────────────────────────────

class FrameMessage(_FrozenModel):
    """A single compressed video frame, optionally with its depth map.

    Stream: frames:{camera_id}
    """

    camera_id: str
    timestamp_ns: int = Field(description="Monotonic nanosecond timestamp")
    frame_seq: int = Field(description="Monotonically increasing frame counter per camera")
    jpeg_b64: str = Field(description="Base64-encoded JPEG bytes")
    width: int
    height: int
    depth_b64: str | None = Field(
        default=None,
        description="Base64-encoded little-endian float32 depth map in metres",
    )
    depth_width: int | None = None
    depth_height: int | None = None


# ── Detection → consumers ─────────────────────────────────────────────────────

class DetectionsEvent(_FrozenModel):
    """A newly published detected-object snapshot.

    Stream: detections:{camera_id}
    Published once per distinct snapshot (adjacent duplicates never reach here).
    """

    camera_id: str
    timestamp_ns: int
    objects: list[DetectedObject]
    inference_time_s: float = Field(description="Latest detection cycle latency")


class DetectionErrorEvent(_FrozenModel):
    """An error relayed by the detection service.

    Stream: detection_errors:{camera_id}
    """

    camera_id: str
    timestamp_ns: int
    kind: str = Field(description="Error class name, e.g. 'ModelLoadFailure'")
    message: str
