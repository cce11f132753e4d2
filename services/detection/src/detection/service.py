"""Detection / tracking orchestration.

Per camera frame the service either dispatches a full detection cycle (at
most once per ``object_detection_rate`` seconds), advances the tracker, or
drops the frame. Detection and tracking results are merged into a single
``detected_objects`` stream: each publish replaces the previous snapshot and
adjacent duplicates are suppressed.
"""
from __future__ import annotations

import threading
import time
from concurrent.futures import CancelledError, Future
from typing import Callable, Iterable, Protocol

from vision_shared.events.schemas import DetectedObject
from vision_shared.logging import get_logger

from detection.broadcast import CurrentValue, Subscription
from detection.config import DetectionConfig
from detection.detector import DetectionResult
from detection.errors import DetectionError, UnknownInternal
from detection.frames import CameraFrame, FrameSource
from detection.performance import PerformanceMonitor
from detection.tracker import ObjectTracker

log = get_logger(__name__)


class DetectionBackend(Protocol):
    performance: PerformanceMonitor | None

    def submit(self, frame: CameraFrame) -> Future[DetectionResult] | None:
        ...

    def shutdown(self, wait: bool = False) -> None:
        ...


class ObjectDetectionService:
    """Publishes detected objects, errors and inference time for one camera.

    Args:
        config: Immutable service configuration.
        detection: Asynchronous detection backend (DetectionWorker in production).
        tracker: Tracker used between detection cycles.
        frame_source: Optional source whose frames/errors are consumed automatically.
        clock: Monotonic clock used for detection pacing.

    Publishers (all replay their latest value to new subscribers):
        detected_objects: tuple of DetectedObject, starts empty.
        errors: latest DetectionError or None.
        inference_time: latest detection latency in seconds, starts at 0.0.
    """

    def __init__(
        self,
        config: DetectionConfig,
        detection: DetectionBackend,
        tracker: ObjectTracker,
        frame_source: FrameSource | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cfg = config
        self._detection = detection
        self._tracker = tracker
        self._clock = clock

        self.detected_objects: CurrentValue[tuple[DetectedObject, ...]] = CurrentValue(
            (), dedupe=True, name="detected_objects"
        )
        self.errors: CurrentValue[DetectionError | None] = CurrentValue(
            None, dedupe=True, name="errors"
        )
        self.inference_time: CurrentValue[float] = CurrentValue(
            0.0, dedupe=True, name="inference_time"
        )

        # Guards tracker access, pacing state and publishing order
        self._lock = threading.RLock()
        self._last_detection = float("-inf")
        self._in_flight = False
        self._closed = False
        self._subscriptions: list[Subscription] = []

        self.frames_received = 0
        self.frames_dropped = 0
        self.detections_dispatched = 0
        self.tracking_updates = 0

        if frame_source is not None:
            self._subscriptions.append(frame_source.frames.subscribe(self.on_frame))
            self._subscriptions.append(frame_source.errors.subscribe(self._relay_error))
        monitor = getattr(detection, "performance", None)
        if monitor is not None:
            self._subscriptions.append(monitor.latest.subscribe(self.inference_time.send))
        self._forward_latency = monitor is None

        log.info(
            "detection_service_ready",
            camera_id=config.camera_id,
            detection_rate_s=config.object_detection_rate,
            tracking=config.object_tracking_enabled,
            labels=sorted(config.detectable_class_labels) if config.detectable_class_labels else None,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    def on_frame(self, frame: CameraFrame) -> None:
        """Handle one delivered frame: detect, track, or drop."""
        if self._closed:
            return
        now = self._clock()
        with self._lock:
            self.frames_received += 1
            if now - self._last_detection >= self._cfg.object_detection_rate:
                future = self._dispatch_detection(frame, now)
                if future is None:
                    return
            elif self._cfg.object_tracking_enabled and self._tracker.is_tracking:
                self._track(frame)
                return
            else:
                self.frames_dropped += 1
                return
        future.add_done_callback(self._on_detection_done)

    def close(self) -> None:
        """Detach from every collaborator; late callbacks become no-ops."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            for sub in self._subscriptions:
                sub.cancel()
            self._subscriptions.clear()
            self._tracker.stop_tracking()
        self._detection.shutdown(wait=False)
        log.info(
            "detection_service_closed",
            camera_id=self._cfg.camera_id,
            frames=self.frames_received,
            dropped=self.frames_dropped,
            detections=self.detections_dispatched,
            tracking_updates=self.tracking_updates,
        )

    def __enter__(self) -> ObjectDetectionService:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _dispatch_detection(self, frame: CameraFrame, now: float) -> Future[DetectionResult] | None:
        if self._in_flight:
            # Previous cycle still running: drop, retry on the next frame
            self.frames_dropped += 1
            return None
        self._tracker.stop_tracking()
        future = self._detection.submit(frame)
        if future is None:
            self.frames_dropped += 1
            return None
        self._last_detection = now
        self._in_flight = True
        self.detections_dispatched += 1
        log.debug("detection_dispatched", camera_id=self._cfg.camera_id, at=round(now, 3))
        return future

    def _track(self, frame: CameraFrame) -> None:
        try:
            objects = self._tracker.update(frame.video)
        except Exception as exc:
            log.error("tracking_update_error", camera_id=self._cfg.camera_id, error=str(exc))
            self._tracker.stop_tracking()
            return
        self.tracking_updates += 1
        self._publish(objects)

    def _on_detection_done(self, future: Future[DetectionResult]) -> None:
        try:
            result = future.result()
        except CancelledError:
            with self._lock:
                self._in_flight = False
            return
        except DetectionError as exc:
            self._finish_failed_cycle(exc)
            return
        except Exception as exc:
            self._finish_failed_cycle(UnknownInternal(str(exc)))
            return

        with self._lock:
            self._in_flight = False
            if self._closed:
                return
            objects = self._filter(result.objects)
            if self._cfg.object_tracking_enabled and objects:
                video = result.frame.video if result.frame is not None else None
                self._tracker.start_tracking(objects, video)
            if self._forward_latency:
                self.inference_time.send(result.latency)
            self._publish(objects)

    def _finish_failed_cycle(self, exc: DetectionError) -> None:
        with self._lock:
            self._in_flight = False
            if self._closed:
                return
        log.warning(
            "detection_cycle_error",
            camera_id=self._cfg.camera_id,
            kind=exc.kind,
            error=exc.message,
        )
        self.errors.send(exc)

    def _relay_error(self, exc: DetectionError) -> None:
        if self._closed:
            return
        log.warning(
            "frame_source_error_relayed",
            camera_id=self._cfg.camera_id,
            kind=exc.kind,
            error=exc.message,
        )
        self.errors.send(exc)

    def _filter(self, objects: Iterable[DetectedObject]) -> tuple[DetectedObject, ...]:
        labels = self._cfg.detectable_class_labels
        threshold = self._cfg.confidence_threshold
        return tuple(
            obj
            for obj in objects
            if (labels is None or obj.label in labels) and obj.confidence >= threshold
        )

    def _publish(self, objects: Iterable[DetectedObject]) -> None:
        self.detected_objects.send(tuple(objects))
