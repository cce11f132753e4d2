"""Inference latency monitor."""
from __future__ import annotations

from detection.broadcast import CurrentValue


class PerformanceMonitor:
    """Keeps the most recent detection-cycle latency (seconds).

    ``latest`` replays the last sample to new subscribers and starts at 0.0.
    """

    def __init__(self) -> None:
        self.latest: CurrentValue[float] = CurrentValue(0.0, dedupe=True, name="inference_time")
        self._samples = 0

    @property
    def sample_count(self) -> int:
        return self._samples

    @property
    def last_latency(self) -> float:
        return self.latest.value

    def record(self, latency: float) -> None:
        self._samples += 1
        self.latest.send(latency)
