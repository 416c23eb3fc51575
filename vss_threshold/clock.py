from __future__ import annotations

import math
import statistics
import time
from collections import deque
from typing import Protocol


class Clock(Protocol):
    """Monotonic clock abstraction.

    Core logic depends on this interface rather than calling real time directly.
    """

    def now(self) -> float:
        """Return monotonic seconds."""


class RealClock:
    """Production clock backed by time.monotonic()."""

    def now(self) -> float:
        return time.monotonic()


class RefreshRateEstimator:
    """Rolling display refresh estimate built from frame timestamps.

    The host calls ``observe()`` once per presented frame. The estimate is the
    reciprocal of the median frame interval over the last ``window`` frames,
    which keeps a single dropped frame or a stall from skewing the result.
    """

    def __init__(self, *, window: int = 60, max_interval_s: float = 0.25) -> None:
        if window < 2:
            raise ValueError("window must be >= 2")
        if max_interval_s <= 0.0:
            raise ValueError("max_interval_s must be > 0")
        self._intervals: deque[float] = deque(maxlen=int(window))
        self._max_interval_s = float(max_interval_s)
        self._last_s: float | None = None

    def observe(self, now: float) -> None:
        last = self._last_s
        self._last_s = float(now)
        if last is None:
            return
        dt = float(now) - last
        # Pauses (window drag, debugger) are not frame intervals.
        if dt <= 0.0 or dt > self._max_interval_s:
            return
        self._intervals.append(dt)

    def reset(self) -> None:
        self._intervals.clear()
        self._last_s = None

    @property
    def sample_count(self) -> int:
        return len(self._intervals)

    def estimate_hz(self) -> float | None:
        """Return the estimated refresh rate, or None when unmeasurable."""

        if len(self._intervals) < 2:
            return None
        median_dt = statistics.median(self._intervals)
        if median_dt <= 0.0:
            return None
        hz = 1.0 / median_dt
        if not math.isfinite(hz):
            return None
        return hz
