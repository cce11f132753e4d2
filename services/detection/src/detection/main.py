"""Detection service entry point."""
from __future__ import annotations

import asyncio
import signal

import redis.asyncio as aioredis

from vision_shared.logging import configure_logging, get_logger
from vision_shared.settings import settings

from detection.config import build_config, resolve_device
from detection.depth import DepthResolver
from detection.detector import ObjectDetector
from detection.frames import RedisFrameSource
from detection.inference import YoloInferenceEngine
from detection.service import ObjectDetectionService
from detection.stream_publisher import DetectionStreamPublisher
from detection.tracker import TemplateTracker
from detection.worker import DetectionWorker

log = get_logger(__name__)

# Seconds between throughput log lines
_STATS_INTERVAL_S = 30.0


async def _log_stats(service: ObjectDetectionService, source: RedisFrameSource) -> None:
    while True:
        await asyncio.sleep(_STATS_INTERVAL_S)
        log.info(
            "detection_throughput",
            frames=service.frames_received,
            frames_skipped=source.frames_skipped,
            dropped=service.frames_dropped,
            detections=service.detections_dispatched,
            tracking_updates=service.tracking_updates,
            objects=len(service.detected_objects.value),
            inference_time_ms=round(service.inference_time.value * 1000, 1),
        )


async def run() -> None:
    configure_logging(settings.log_format, settings.log_level, service="detection")
    config = build_config(settings)
    device = resolve_device(config.compute_unit)

    log.info(
        "detection_service_starting",
        camera_id=config.camera_id,
        device=device,
        model=config.model_name,
        environment=settings.environment,
    )

    engine = YoloInferenceEngine(
        model_name=config.model_name,
        device=device,
        confidence=config.confidence_threshold,
        iou=config.iou_threshold,
    )
    detector = ObjectDetector(
        engine,
        config,
        DepthResolver(depth_range=config.depth_range, sample_ratio=config.depth_sample_ratio),
    )
    worker = DetectionWorker(detector)
    tracker = TemplateTracker(
        confidence_threshold=config.object_tracking_confidence_threshold,
        search_scale=config.tracking_search_scale,
        display_size=config.display_size,
    )
    source = RedisFrameSource(config.camera_id, block_ms=config.block_ms)
    service = ObjectDetectionService(config, worker, tracker, frame_source=source)

    redis = aioredis.from_url(config.redis_url, decode_responses=False)

    tasks = [source.run(redis), _log_stats(service, source)]
    publisher = None
    if config.publish_stream:
        publisher = DetectionStreamPublisher(service, config.camera_id, maxlen=config.stream_maxlen)
        publisher.start()
        tasks.append(publisher.run(redis))

    loop = asyncio.get_running_loop()

    def _shutdown(sig, frame):
        log.info("shutdown_signal_received", signal=sig)
        source.stop()
        for task in asyncio.all_tasks(loop):
            task.cancel()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    try:
        await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        pass
    finally:
        if publisher is not None:
            publisher.stop()
        service.close()
        await redis.aclose()
        log.info("detection_service_stopped", camera_id=config.camera_id)


def main() -> None:
    asyncio.run(run())


if __name__ == "__main__":
    main()
