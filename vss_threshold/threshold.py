from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum

MIN_REVERSALS = 4
DEFAULT_WINDOW = 6


class ThresholdMethod(StrEnum):
    GEOMETRIC = "geometric"  # mean of logs; matches log-spaced staircase levels
    ARITHMETIC = "arithmetic"


@dataclass(frozen=True, slots=True)
class ThresholdEstimate:
    percent_range: float
    rms_percent: float
    method: ThresholdMethod
    reversals_used: int


def percent_range_to_rms_percent(percent_range: float) -> float:
    """Convert a uniform-noise percent-of-range contrast to RMS contrast percent."""

    return (float(percent_range) / 100.0) / math.sqrt(3.0) * 100.0


def estimate_threshold(
    reversals: Sequence[float],
    *,
    method: ThresholdMethod = ThresholdMethod.GEOMETRIC,
    min_reversals: int = MIN_REVERSALS,
    window: int = DEFAULT_WINDOW,
) -> ThresholdEstimate | None:
    """Estimate threshold from the most recent reversals.

    Returns None until ``min_reversals`` reversals exist. Pure: callers recompute
    whenever the reversal list changes.
    """

    if window < 1:
        raise ValueError("window must be >= 1")
    if len(reversals) < max(1, min_reversals):
        return None

    used = [float(v) for v in reversals[-window:]]
    if method is ThresholdMethod.GEOMETRIC:
        if any(v <= 0.0 for v in used):
            return None
        level = math.exp(sum(math.log(v) for v in used) / len(used))
    else:
        level = sum(used) / len(used)

    return ThresholdEstimate(
        percent_range=level,
        rms_percent=percent_range_to_rms_percent(level),
        method=method,
        reversals_used=len(used),
    )
