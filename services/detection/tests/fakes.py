"""Test doubles driven by injected events."""
from __future__ import annotations

from concurrent.futures import Future
from typing import Sequence

import numpy as np

from vision_shared.events.schemas import DetectedObject, Rect

from detection.broadcast import Broadcast
from detection.detector import DetectionResult
from detection.errors import DetectionError
from detection.frames import CameraFrame
from detection.inference import RawDetection
from detection.performance import PerformanceMonitor


def make_rect(x: float = 0.1, y: float = 0.1, w: float = 0.2, h: float = 0.2) -> Rect:
    return Rect(x=x, y=y, width=w, height=h)


def make_object(
    label: str = "Object 1",
    confidence: float = 0.9,
    box: Rect | None = None,
    depth: float | None = None,
) -> DetectedObject:
    box = box or make_rect()
    return DetectedObject(
        label=label,
        confidence=confidence,
        depth=depth,
        bounding_box=box,
        display_box=box,
    )


def make_frame(t: float = 0.0, size: int = 64, depth: np.ndarray | None = None) -> CameraFrame:
    return CameraFrame(
        video=np.zeros((size, size, 3), dtype=np.uint8),
        depth=depth,
        timestamp=t,
    )


class FakeClock:
    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeFrameSource:
    def __init__(self) -> None:
        self.frames: Broadcast[CameraFrame] = Broadcast(name="frames")
        self.errors: Broadcast[DetectionError] = Broadcast(name="errors")


class FakeDetection:
    """Detection backend whose cycles are completed by the test."""

    def __init__(self, events: list[str] | None = None, performance: PerformanceMonitor | None = None) -> None:
        self.performance = performance
        self.events = events if events is not None else []
        self.frames: list[CameraFrame] = []
        self.pending: list[tuple[Future, CameraFrame]] = []
        self.shut_down = False

    @property
    def dispatch_count(self) -> int:
        return len(self.frames)

    def submit(self, frame: CameraFrame) -> Future:
        self.events.append("detect")
        future: Future = Future()
        self.frames.append(frame)
        self.pending.append((future, frame))
        return future

    def complete(self, objects: Sequence[DetectedObject], latency: float = 0.05) -> None:
        future, frame = self.pending.pop(0)
        future.set_result(DetectionResult(objects=tuple(objects), latency=latency, frame=frame))

    def fail(self, error: Exception) -> None:
        future, _frame = self.pending.pop(0)
        future.set_exception(error)

    def shutdown(self, wait: bool = False) -> None:
        self.shut_down = True


class FakeTracker:
    """Tracker that echoes its seed (or a scripted update) back."""

    def __init__(self, events: list[str] | None = None) -> None:
        self.events = events if events is not None else []
        self.seeds: list[tuple[DetectedObject, ...]] = []
        self.seed_videos: list[np.ndarray | None] = []
        self.update_count = 0
        self.next_update: tuple[DetectedObject, ...] | None = None
        self._current: tuple[DetectedObject, ...] = ()
        self._active = False

    @property
    def is_tracking(self) -> bool:
        return self._active

    def start_tracking(self, seed: Sequence[DetectedObject], video: np.ndarray | None = None) -> None:
        self.events.append("start")
        self.seeds.append(tuple(seed))
        self.seed_videos.append(video)
        self._current = tuple(seed)
        self._active = True

    def update(self, video: np.ndarray) -> tuple[DetectedObject, ...]:
        self.events.append("update")
        self.update_count += 1
        if self.next_update is not None:
            self._current = self.next_update
        return self._current

    def stop_tracking(self) -> None:
        self.events.append("stop")
        self._active = False
        self._current = ()


class FakeInferenceEngine:
    def __init__(self, raw: Sequence[RawDetection] = (), error: Exception | None = None) -> None:
        self.raw = list(raw)
        self.error = error
        self.calls = 0

    def infer(self, video: np.ndarray) -> list[RawDetection]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.raw)
