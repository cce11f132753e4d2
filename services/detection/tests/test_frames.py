"""Unit tests for frame decoding and RedisFrameSource — Redis is mocked."""
from __future__ import annotations

import asyncio
import base64
from unittest.mock import AsyncMock, MagicMock

import cv2
import numpy as np
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from vision_shared.events.schemas import FrameMessage

import detection.frames as frames_mod
from detection.errors import ConfigurationInvalid, DeviceUnavailable
from detection.frames import RedisFrameSource, decode_frame


def _jpeg_b64(color_bgr=(255, 0, 0), size=(48, 32)) -> str:
    w, h = size
    img = np.zeros((h, w, 3), dtype=np.uint8)
    img[:, :] = color_bgr
    ok, buf = cv2.imencode(".jpg", img)
    assert ok
    return base64.b64encode(buf.tobytes()).decode()


def _message(seq: int = 0, depth: np.ndarray | None = None, **overrides) -> dict:
    fields = dict(
        camera_id="cam-test",
        timestamp_ns=2_500_000_000,
        frame_seq=seq,
        jpeg_b64=_jpeg_b64(),
        width=48,
        height=32,
    )
    if depth is not None:
        fields.update(
            depth_b64=base64.b64encode(depth.astype("<f4").tobytes()).decode(),
            depth_width=depth.shape[1],
            depth_height=depth.shape[0],
        )
    fields.update(overrides)
    return {"data": FrameMessage(**fields).model_dump_json()}


# ── decode_frame ──────────────────────────────────────────────────────────────

def test_decode_frame_returns_bgr_video():
    frame = decode_frame(_message())

    assert frame.video.shape == (32, 48, 3)
    assert frame.width == 48 and frame.height == 32
    b, g, r = frame.video[16, 24].astype(int)
    assert b > 200 and r < 50 and g < 50
    assert frame.depth is None
    assert frame.timestamp == pytest.approx(2.5)


def test_decode_frame_with_depth():
    depth = np.arange(12, dtype=np.float32).reshape(3, 4)
    frame = decode_frame(_message(depth=depth))
    np.testing.assert_array_equal(frame.depth, depth)


def test_decode_frame_rejects_bad_json():
    with pytest.raises(ConfigurationInvalid):
        decode_frame({"data": "{not json"})


def test_decode_frame_rejects_non_image_payload():
    msg = _message(jpeg_b64=base64.b64encode(b"not a jpeg").decode())
    with pytest.raises(ConfigurationInvalid):
        decode_frame(msg)


def test_decode_frame_rejects_depth_size_mismatch():
    msg = _message(
        depth_b64=base64.b64encode(b"\x00" * 10).decode(),
        depth_width=4,
        depth_height=3,
    )
    with pytest.raises(ConfigurationInvalid, match="expected 48"):
        decode_frame(msg)


def test_decode_frame_rejects_depth_without_dimensions():
    msg = _message(depth_b64=base64.b64encode(b"\x00" * 48).decode())
    with pytest.raises(ConfigurationInvalid):
        decode_frame(msg)


# ── RedisFrameSource ──────────────────────────────────────────────────────────

def _xread_reply(*entries: tuple[bytes, dict]) -> list:
    encoded = [
        (msg_id, {k.encode(): v.encode() for k, v in data.items()})
        for msg_id, data in entries
    ]
    return [[b"frames:cam-test", encoded]]


def _run_source(replies: list, source: RedisFrameSource, tail: list | None = None) -> MagicMock:
    """Run the source against scripted XREAD replies, stopping when they run out."""
    remaining = list(replies)

    async def fake_xread(*args, **kwargs):
        if not remaining:
            source.stop()
            return []
        reply = remaining.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    redis = MagicMock()
    redis.xread = AsyncMock(side_effect=fake_xread)
    redis.xrevrange = AsyncMock(return_value=tail or [])
    asyncio.run(asyncio.wait_for(source.run(redis), timeout=5))
    return redis


def test_source_delivers_only_newest_entry_of_a_read():
    source = RedisFrameSource("cam-test", block_ms=10)
    delivered = []
    source.frames.subscribe(delivered.append)

    redis = _run_source(
        [_xread_reply((b"1-0", _message(seq=1)), (b"2-0", _message(seq=2, timestamp_ns=3_000_000_000)))],
        source,
    )

    assert len(delivered) == 1
    assert delivered[0].timestamp == pytest.approx(3.0)
    assert source.frames_skipped == 1
    assert source.frames_delivered == 1
    # Second read continues after the last seen id
    assert redis.xread.await_args_list[1].kwargs["streams"] == {"frames:cam-test": "2-0"}


def test_source_relays_connection_errors_and_recovers(monkeypatch):
    monkeypatch.setattr(frames_mod, "_BACKOFF_BASE", 0.0)
    source = RedisFrameSource("cam-test", block_ms=10)
    errors = []
    delivered = []
    source.errors.subscribe(errors.append)
    source.frames.subscribe(delivered.append)

    _run_source(
        [RedisConnectionError("refused"), _xread_reply((b"5-0", _message(seq=5)))],
        source,
    )

    assert len(errors) == 1
    assert isinstance(errors[0], DeviceUnavailable)
    assert "refused" in errors[0].message
    assert len(delivered) == 1


def test_source_relays_decode_errors_and_continues():
    source = RedisFrameSource("cam-test", block_ms=10)
    errors = []
    delivered = []
    source.errors.subscribe(errors.append)
    source.frames.subscribe(delivered.append)

    _run_source(
        [
            _xread_reply((b"1-0", {"data": "garbage"})),
            _xread_reply((b"2-0", _message(seq=2))),
        ],
        source,
    )

    assert [e.kind for e in errors] == ["ConfigurationInvalid"]
    assert len(delivered) == 1


def test_full_batch_jumps_to_stream_tail():
    source = RedisFrameSource("cam-test", block_ms=10, read_batch=2)
    delivered = []
    source.frames.subscribe(delivered.append)
    newest = _message(seq=40, timestamp_ns=9_000_000_000)
    tail = [(b"40-0", {k.encode(): v.encode() for k, v in newest.items()})]

    redis = _run_source(
        [_xread_reply((b"1-0", _message(seq=1)), (b"2-0", _message(seq=2)))],
        source,
        tail=tail,
    )

    assert len(delivered) == 1
    assert delivered[0].timestamp == pytest.approx(9.0)
    assert source.frames_skipped == 2
    redis.xrevrange.assert_awaited_once_with("frames:cam-test", count=1)
    # The next read continues from the tail, not from the end of the stale batch
    assert redis.xread.await_args_list[1].kwargs["streams"] == {"frames:cam-test": "40-0"}


def test_partial_batch_does_not_query_tail():
    source = RedisFrameSource("cam-test", block_ms=10, read_batch=4)
    redis = _run_source([_xread_reply((b"1-0", _message(seq=1)))], source)
    redis.xrevrange.assert_not_awaited()
