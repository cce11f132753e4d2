"""Bounded asynchronous executor for detection cycles.

One cycle runs at a time on a dedicated thread. A submit while a cycle is in
flight is refused rather than queued, so stale frames never pile up.
"""
from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable

from vision_shared.logging import get_logger

from detection.detector import DetectionResult, ObjectDetector
from detection.errors import DetectionError, UnknownInternal
from detection.frames import CameraFrame
from detection.performance import PerformanceMonitor

log = get_logger(__name__)


class DetectionWorker:
    """Runs ObjectDetector.detect off the frame-delivery thread.

    Args:
        detector: Synchronous detection pipeline.
        monitor: Receives one latency sample per successful cycle.
        clock: Monotonic clock used for latency measurement.
    """

    def __init__(
        self,
        detector: ObjectDetector,
        monitor: PerformanceMonitor | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._detector = detector
        self.performance = monitor or PerformanceMonitor()
        self._clock = clock
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="detection")
        self._lock = threading.Lock()
        self._busy = False
        self._closed = False
        self.cycles = 0
        self.failures = 0

    @property
    def busy(self) -> bool:
        with self._lock:
            return self._busy

    def submit(self, frame: CameraFrame) -> Future[DetectionResult] | None:
        """Dispatch a frame. Returns None if a cycle is in flight or the worker is shut down."""
        with self._lock:
            if self._busy or self._closed:
                return None
            self._busy = True
        dispatched_at = self._clock()
        future = self._executor.submit(self._run, frame, dispatched_at)
        future.add_done_callback(self._release)
        return future

    def shutdown(self, wait: bool = False) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait, cancel_futures=True)
        log.info("detection_worker_stopped", cycles=self.cycles, failures=self.failures)

    def _run(self, frame: CameraFrame, dispatched_at: float) -> DetectionResult:
        try:
            objects = self._detector.detect(frame)
        except DetectionError as exc:
            self.failures += 1
            log.warning("detection_cycle_failed", kind=exc.kind, error=exc.message)
            raise
        except Exception as exc:
            self.failures += 1
            log.error("detection_cycle_crashed", error=str(exc))
            raise UnknownInternal(str(exc)) from exc

        latency = self._clock() - dispatched_at
        self.cycles += 1
        self.performance.record(latency)
        return DetectionResult(objects=objects, latency=latency, frame=frame)

    def _release(self, _future: Future) -> None:
        with self._lock:
            self._busy = False
