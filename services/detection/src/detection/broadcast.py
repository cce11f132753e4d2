"""Thread-safe in-process fan-out cells.

``Broadcast`` forwards each value to the subscribers registered at the time
it is sent. ``CurrentValue`` also keeps the last value and hands it to every
new subscriber straight away, so late subscribers never miss the current
state.
"""
from __future__ import annotations

import threading
from typing import Callable, Generic, TypeVar

from vision_shared.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")


class Subscription:
    """Handle returned by ``subscribe``; call ``cancel()`` to stop receiving."""

    def __init__(self, cancel: Callable[[], None]) -> None:
        self._cancel = cancel
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if not self._cancelled:
            self._cancelled = True
            self._cancel()


class Broadcast(Generic[T]):
    """Pure event fan-out: values are delivered in send order, never replayed."""

    def __init__(self, name: str = "broadcast") -> None:
        self.name = name
        # Re-entrant so a subscriber may send or subscribe from its callback.
        self._lock = threading.RLock()
        self._subscribers: dict[int, Callable[[T], None]] = {}
        self._next_key = 0

    def subscribe(self, callback: Callable[[T], None]) -> Subscription:
        with self._lock:
            key = self._next_key
            self._next_key += 1
            self._subscribers[key] = callback
            self._on_subscribe(callback)
        return Subscription(lambda: self._unsubscribe(key))

    def send(self, value: T) -> None:
        with self._lock:
            if not self._accept(value):
                return
            for callback in list(self._subscribers.values()):
                self._deliver(callback, value)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def _unsubscribe(self, key: int) -> None:
        with self._lock:
            self._subscribers.pop(key, None)

    def _accept(self, value: T) -> bool:
        return True

    def _on_subscribe(self, callback: Callable[[T], None]) -> None:
        pass

    def _deliver(self, callback: Callable[[T], None], value: T) -> None:
        try:
            callback(value)
        except Exception as exc:
            log.error("subscriber_error", channel=self.name, error=str(exc))


class CurrentValue(Broadcast[T]):
    """Broadcast with replay-latest semantics.

    Args:
        initial: Value held (and replayed) before the first ``send``.
        dedupe: Drop a ``send`` whose value equals the current one.
        name: Channel name used in log lines.
    """

    def __init__(self, initial: T, dedupe: bool = False, name: str = "current_value") -> None:
        super().__init__(name=name)
        self._value = initial
        self._dedupe = dedupe

    @property
    def value(self) -> T:
        with self._lock:
            return self._value

    def _accept(self, value: T) -> bool:
        if self._dedupe and value == self._value:
            return False
        self._value = value
        return True

    def _on_subscribe(self, callback: Callable[[T], None]) -> None:
        self._deliver(callback, self._value)
