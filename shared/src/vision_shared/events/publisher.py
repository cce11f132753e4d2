"""Redis Streams publisher and reader helpers."""
from __future__ import annotations

import time

from redis.asyncio import Redis

from vision_shared.events.schemas import _FrozenModel

# Stream name templates
STREAM_FRAMES = "frames:{camera_id}"
STREAM_DETECTIONS = "detections:{camera_id}"
STREAM_DETECTION_ERRORS = "detection_errors:{camera_id}"

# XREAD id meaning "only entries added after this call"
LATEST_ID = "$"


def frames_stream(camera_id: str) -> str:
    return STREAM_FRAMES.format(camera_id=camera_id)


def detections_stream(camera_id: str) -> str:
    return STREAM_DETECTIONS.format(camera_id=camera_id)


def detection_errors_stream(camera_id: str) -> str:
    return STREAM_DETECTION_ERRORS.format(camera_id=camera_id)


async def publish(
    redis: Redis,
    stream: str,
    event: _FrozenModel,
    maxlen: int = 1000,
) -> str:
    """Serialize a Pydantic event and XADD it to a Redis Stream.

    Args:
        redis: Async Redis client.
        stream: Stream name.
        event: A frozen Pydantic model instance.
        maxlen: Approximate max stream length (MAXLEN ~).

    Returns:
        The Redis message ID of the newly added entry.
    """
    payload = {"data": event.model_dump_json()}
    msg_id = await redis.xadd(stream, payload, maxlen=maxlen, approximate=True)
    return msg_id.decode() if isinstance(msg_id, bytes) else msg_id


async def read_stream(
    redis: Redis,
    stream: str,
    last_id: str = LATEST_ID,
    count: int = 10,
    block_ms: int = 1000,
) -> list[tuple[str, dict]]:
    """XREAD entries newer than ``last_id``.

    Returns a list of (message_id, data_dict) tuples with bytes decoded to str.
    """
    results = await redis.xread(streams={stream: last_id}, count=count, block=block_ms)
    if not results:
        return []
    return [
        _decode_entry(msg_id, fields)
        for _stream, entries in results
        for msg_id, fields in entries
    ]


async def read_latest(redis: Redis, stream: str) -> tuple[str, dict] | None:
    """Return the newest entry of a stream (XREVRANGE + - COUNT 1), or None if empty."""
    entries = await redis.xrevrange(stream, count=1)
    if not entries:
        return None
    msg_id, fields = entries[0]
    return _decode_entry(msg_id, fields)


def _decode_entry(msg_id, fields: dict) -> tuple[str, dict]:
    msg_id_str = msg_id.decode() if isinstance(msg_id, bytes) else msg_id
    decoded = {
        k.decode() if isinstance(k, bytes) else k: (
            v.decode() if isinstance(v, bytes) else v
        )
        for k, v in fields.items()
    }
    return msg_id_str, decoded


def now_ns() -> int:
    """Current monotonic time in nanoseconds."""
    return time.monotonic_ns()
