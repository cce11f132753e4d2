"""Unit tests for the Broadcast / CurrentValue fan-out cells."""
from __future__ import annotations

import threading

from detection.broadcast import Broadcast, CurrentValue


def test_broadcast_delivers_in_send_order_without_replay():
    channel: Broadcast[int] = Broadcast()
    channel.send(0)  # nobody listening yet

    received: list[int] = []
    channel.subscribe(received.append)
    for v in (1, 2, 3):
        channel.send(v)

    assert received == [1, 2, 3]


def test_current_value_replays_latest_to_late_subscriber():
    cell: CurrentValue[str] = CurrentValue("initial")
    cell.send("a")
    cell.send("b")

    received: list[str] = []
    cell.subscribe(received.append)

    assert received == ["b"]
    assert cell.value == "b"


def test_current_value_initial_is_replayed():
    cell: CurrentValue[tuple] = CurrentValue(())
    received: list[tuple] = []
    cell.subscribe(received.append)
    assert received == [()]


def test_dedupe_suppresses_adjacent_equal_values_only():
    cell: CurrentValue[int] = CurrentValue(0, dedupe=True)
    received: list[int] = []
    cell.subscribe(received.append)

    for v in (0, 1, 1, 2, 1):
        cell.send(v)

    assert received == [0, 1, 2, 1]


def test_without_dedupe_equal_values_are_delivered():
    cell: CurrentValue[int] = CurrentValue(0)
    received: list[int] = []
    cell.subscribe(received.append)
    cell.send(0)
    assert received == [0, 0]


def test_cancelled_subscription_stops_delivery():
    channel: Broadcast[int] = Broadcast()
    received: list[int] = []
    sub = channel.subscribe(received.append)
    channel.send(1)
    sub.cancel()
    sub.cancel()  # idempotent
    channel.send(2)

    assert received == [1]
    assert sub.cancelled
    assert channel.subscriber_count == 0


def test_failing_subscriber_does_not_block_others():
    channel: Broadcast[int] = Broadcast()
    received: list[int] = []

    def broken(_value: int) -> None:
        raise RuntimeError("boom")

    channel.subscribe(broken)
    channel.subscribe(received.append)
    channel.send(7)

    assert received == [7]


def test_subscriber_may_send_reentrantly():
    cell: CurrentValue[int] = CurrentValue(0)
    received: list[int] = []

    def bump(value: int) -> None:
        received.append(value)
        if value < 3:
            cell.send(value + 1)

    cell.subscribe(bump)
    assert received == [0, 1, 2, 3]


def test_concurrent_sends_each_delivered_once():
    channel: Broadcast[int] = Broadcast()
    received: list[int] = []
    channel.subscribe(received.append)

    def producer(offset: int) -> None:
        for i in range(200):
            channel.send(offset + i)

    threads = [threading.Thread(target=producer, args=(n * 1000,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(received) == sorted(n * 1000 + i for n in range(4) for i in range(200))
