"""Rolling frame timing statistics for the debug panel."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field


@dataclass
class FrameHistory:
    """Keep the last ``max_age`` seconds of frame start times and durations."""

    max_age: float = 1.0
    max_len: int = 300
    _starts: deque[float] = field(default_factory=deque, repr=False)
    _durations: deque[float] = field(default_factory=deque, repr=False)

    def on_new_frame(self, now: float, previous_frame_time: float | None) -> None:
        if previous_frame_time is not None:
            self._durations.append(max(0.0, float(previous_frame_time)))
        self._starts.append(float(now))
        while self._starts and (now - self._starts[0] > self.max_age or len(self._starts) > self.max_len):
            self._starts.popleft()
        while len(self._durations) > len(self._starts):
            self._durations.popleft()

    def fps(self) -> float:
        if len(self._starts) < 2:
            return 0.0
        span = self._starts[-1] - self._starts[0]
        if span <= 0:
            return 0.0
        return (len(self._starts) - 1) / span

    def mean_frame_time(self) -> float:
        if not self._durations:
            return 0.0
        return sum(self._durations) / len(self._durations)

    def __len__(self) -> int:
        return len(self._starts)


__all__ = ["FrameHistory"]
