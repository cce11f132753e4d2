"""Camera frames and the frame source boundary.

``RedisFrameSource`` consumes ``frames:{camera_id}`` and broadcasts decoded
CameraFrames. Frames that piled up while the consumer was busy are skipped:
only the newest entry of each read is delivered, and a read that fills
a whole batch jumps to the stream tail instead of walking the backlog.
"""
from __future__ import annotations

import asyncio
import base64
from dataclasses import dataclass
from io import BytesIO
from typing import Protocol

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError
from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from vision_shared.events.publisher import LATEST_ID, frames_stream, read_latest, read_stream
from vision_shared.events.schemas import FrameMessage
from vision_shared.logging import get_logger

from detection.broadcast import Broadcast
from detection.errors import ConfigurationInvalid, DetectionError, DeviceUnavailable

log = get_logger(__name__)

# Exponential backoff parameters for stream reconnection
_BACKOFF_BASE = 1.0
_BACKOFF_MAX = 30.0


@dataclass(frozen=True)
class CameraFrame:
    """One synchronized sensor frame.

    Attributes:
        video: HxWx3 uint8 BGR image (or HxW grayscale).
        depth: Optional HxW float32 depth map in metres.
        timestamp: Capture time in seconds.
    """

    video: np.ndarray
    depth: np.ndarray | None = None
    timestamp: float = 0.0

    @property
    def width(self) -> int:
        return int(self.video.shape[1])

    @property
    def height(self) -> int:
        return int(self.video.shape[0])


class FrameSource(Protocol):
    frames: Broadcast[CameraFrame]
    errors: Broadcast[DetectionError]


def decode_frame(msg_data: dict) -> CameraFrame:
    """Parse a Redis Stream message dict into a CameraFrame.

    Raises:
        ConfigurationInvalid: the message, image or depth payload is malformed.
    """
    try:
        event = FrameMessage.model_validate_json(msg_data.get("data", ""))
        jpeg_bytes = base64.b64decode(event.jpeg_b64)
        img = Image.open(BytesIO(jpeg_bytes)).convert("RGB")
    except (ValidationError, ValueError, UnidentifiedImageError) as exc:
        raise ConfigurationInvalid(f"malformed frame message: {exc}") from exc

    video = cv2.cvtColor(np.array(img), cv2.COLOR_RGB2BGR)
    return CameraFrame(
        video=video,
        depth=_decode_depth(event),
        timestamp=event.timestamp_ns / 1e9,
    )


def _decode_depth(event: FrameMessage) -> np.ndarray | None:
    if not event.depth_b64:
        return None
    if not event.depth_width or not event.depth_height:
        raise ConfigurationInvalid("depth payload without depth_width/depth_height")
    try:
        raw = base64.b64decode(event.depth_b64)
    except ValueError as exc:
        raise ConfigurationInvalid(f"malformed depth payload: {exc}") from exc
    expected = event.depth_width * event.depth_height * 4
    if len(raw) != expected:
        raise ConfigurationInvalid(
            f"depth payload has {len(raw)} bytes, expected {expected}"
        )
    return np.frombuffer(raw, dtype="<f4").reshape(event.depth_height, event.depth_width)


class RedisFrameSource:
    """Reads frames for one camera from Redis and broadcasts them.

    Args:
        camera_id: Camera identifier (used for the stream name).
        block_ms: XREAD block timeout.
        read_batch: Max entries fetched per read; all but the newest are skipped.
    """

    def __init__(self, camera_id: str, block_ms: int = 500, read_batch: int = 16) -> None:
        self._camera_id = camera_id
        self._block_ms = block_ms
        self._read_batch = read_batch
        self._stream = frames_stream(camera_id)
        self._stopped = asyncio.Event()
        self.frames: Broadcast[CameraFrame] = Broadcast(name="frames")
        self.errors: Broadcast[DetectionError] = Broadcast(name="frame_source_errors")
        self.frames_delivered = 0
        self.frames_skipped = 0

    def stop(self) -> None:
        self._stopped.set()

    async def run(self, redis: Redis) -> None:
        """Main loop — reconnects with backoff until stop() is called."""
        log.info("frame_source_starting", camera_id=self._camera_id, stream=self._stream)
        backoff = _BACKOFF_BASE
        last_id = LATEST_ID

        while not self._stopped.is_set():
            try:
                messages = await read_stream(
                    redis,
                    self._stream,
                    last_id,
                    count=self._read_batch,
                    block_ms=self._block_ms,
                )
                if len(messages) >= self._read_batch:
                    # Backlog exceeds one read: jump straight to the stream tail
                    tail = await read_latest(redis, self._stream)
                    if tail is not None and tail[0] != messages[-1][0]:
                        messages.append(tail)
            except (RedisError, OSError) as exc:
                self.errors.send(DeviceUnavailable(f"frame stream {self._stream} unavailable: {exc}"))
                log.warning(
                    "frame_source_error",
                    camera_id=self._camera_id,
                    error=str(exc),
                    retry_in=backoff,
                )
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, _BACKOFF_MAX)
                continue

            backoff = _BACKOFF_BASE
            if not messages:
                continue

            last_id, msg_data = messages[-1]
            self.frames_skipped += len(messages) - 1
            try:
                frame = decode_frame(msg_data)
            except ConfigurationInvalid as exc:
                self.errors.send(exc)
                log.error(
                    "frame_decode_error",
                    camera_id=self._camera_id,
                    msg_id=last_id,
                    error=str(exc),
                )
                continue

            self.frames_delivered += 1
            self.frames.send(frame)

        log.info(
            "frame_source_stopped",
            camera_id=self._camera_id,
            delivered=self.frames_delivered,
            skipped=self.frames_skipped,
        )
