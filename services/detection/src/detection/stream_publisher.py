"""Detection stream publisher — mirrors published snapshots and errors into Redis Streams."""
from __future__ import annotations

import asyncio

from redis.asyncio import Redis

from vision_shared.events.publisher import (
    detection_errors_stream,
    detections_stream,
    now_ns,
    publish,
)
from vision_shared.events.schemas import DetectedObject, DetectionErrorEvent, DetectionsEvent, _FrozenModel
from vision_shared.logging import get_logger

from detection.broadcast import Subscription
from detection.errors import DetectionError
from detection.service import ObjectDetectionService

log = get_logger(__name__)


class DetectionStreamPublisher:
    """Subscribes to an ObjectDetectionService and XADDs what it publishes.

    Values may be produced on any thread (frame loop or detection worker);
    they are handed to the event loop and written by a single drain task so
    the stream keeps the order in which they were published.

    Args:
        service: Service whose publishers are mirrored.
        camera_id: Camera identifier (used for stream names).
        maxlen: Approximate MAXLEN of the output streams.
        queue_size: Pending events kept while Redis is slow; oldest dropped first.
    """

    def __init__(
        self,
        service: ObjectDetectionService,
        camera_id: str,
        maxlen: int = 1000,
        queue_size: int = 64,
    ) -> None:
        self._service = service
        self._camera_id = camera_id
        self._maxlen = maxlen
        self._objects_stream = detections_stream(camera_id)
        self._errors_stream = detection_errors_stream(camera_id)
        self._queue: asyncio.Queue[tuple[str, _FrozenModel]] = asyncio.Queue(maxsize=queue_size)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._subscriptions: list[Subscription] = []
        self.published = 0
        self.dropped = 0

    def start(self) -> None:
        """Subscribe to the service; must be called from the event loop thread."""
        self._loop = asyncio.get_running_loop()
        self._subscriptions = [
            self._service.detected_objects.subscribe(self._on_objects),
            self._service.errors.subscribe(self._on_error),
        ]

    def stop(self) -> None:
        for sub in self._subscriptions:
            sub.cancel()
        self._subscriptions = []

    async def run(self, redis: Redis) -> None:
        """Drain loop — publishes queued events until cancelled."""
        log.info(
            "detection_publisher_starting",
            camera_id=self._camera_id,
            stream=self._objects_stream,
        )
        try:
            while True:
                stream, event = await self._queue.get()
                try:
                    msg_id = await publish(redis, stream, event, maxlen=self._maxlen)
                    self.published += 1
                    log.debug("detection_event_published", stream=stream, msg_id=msg_id)
                except Exception as exc:
                    log.error(
                        "detection_publish_error",
                        camera_id=self._camera_id,
                        stream=stream,
                        error=str(exc),
                    )
        finally:
            log.info(
                "detection_publisher_stopped",
                camera_id=self._camera_id,
                published=self.published,
                dropped=self.dropped,
            )

    def _on_objects(self, objects: tuple[DetectedObject, ...]) -> None:
        event = DetectionsEvent(
            camera_id=self._camera_id,
            timestamp_ns=now_ns(),
            objects=list(objects),
            inference_time_s=self._service.inference_time.value,
        )
        self._schedule(self._objects_stream, event)

    def _on_error(self, error: DetectionError | None) -> None:
        if error is None:
            return
        event = DetectionErrorEvent(
            camera_id=self._camera_id,
            timestamp_ns=now_ns(),
            kind=error.kind,
            message=error.message,
        )
        self._schedule(self._errors_stream, event)

    def _schedule(self, stream: str, event: _FrozenModel) -> None:
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._enqueue, stream, event)

    def _enqueue(self, stream: str, event: _FrozenModel) -> None:
        try:
            self._queue.put_nowait((stream, event))
        except asyncio.QueueFull:
            # Redis is lagging: drop the oldest item and retry once
            self._queue.get_nowait()
            self.dropped += 1
            self._queue.put_nowait((stream, event))
