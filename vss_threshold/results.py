from __future__ import annotations

import logging
from dataclasses import dataclass

from .experiment import ContrastThresholdEngine, TrialRecord
from .staircase import StopReason
from .threshold import ThresholdEstimate

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SessionResult:
    """Summary + trial log for one staircase session."""

    seed: int
    session_seed: int
    n_down: int
    stop_reason: StopReason | None

    trials: int
    correct: int
    incorrect: int
    accuracy: float
    reversals: tuple[float, ...]
    threshold: ThresholdEstimate | None

    mean_rt_ms: float | None
    median_rt_ms: float | None
    mean_effective_hz: float | None

    records: list[TrialRecord]


def session_result_from_engine(engine: ContrastThresholdEngine) -> SessionResult:
    """Build a SessionResult from an engine whose session has ended (or is running)."""

    records = engine.trial_log()
    state = engine.state
    correct = sum(1 for r in records if r.correct)
    trials = len(records)
    rts_ms = sorted(int(round(r.response_time_s * 1000.0)) for r in records)

    mean_ms: float | None
    median_ms: float | None
    if not rts_ms:
        mean_ms = None
        median_ms = None
    else:
        mean_ms = float(sum(rts_ms)) / float(len(rts_ms))
        mid = len(rts_ms) // 2
        if len(rts_ms) % 2 == 1:
            median_ms = float(rts_ms[mid])
        else:
            median_ms = float(rts_ms[mid - 1] + rts_ms[mid]) / 2.0

    quality = engine.quality_log()
    mean_hz = None if not quality else sum(q.effective_hz for q in quality) / len(quality)

    return SessionResult(
        seed=int(engine.seed),
        session_seed=int(engine.session_seed),
        n_down=int(engine.config.staircase.n_down),
        stop_reason=None if state is None else state.stop_reason,
        trials=trials,
        correct=correct,
        incorrect=trials - correct,
        accuracy=0.0 if trials == 0 else correct / trials,
        reversals=engine.reversals(),
        threshold=engine.threshold(),
        mean_rt_ms=mean_ms,
        median_rt_ms=median_ms,
        mean_effective_hz=mean_hz,
        records=records,
    )


def log_session_result(result: SessionResult, *, log: logging.Logger | None = None) -> None:
    out = log or logger
    est = result.threshold
    out.info(
        "Result: reason=%s trials=%d correct=%d accuracy=%.1f%% reversals=%d "
        "threshold=%s median_rt=%s",
        result.stop_reason or "stopped",
        result.trials,
        result.correct,
        result.accuracy * 100.0,
        len(result.reversals),
        "n/a" if est is None else f"{est.rms_percent:.3f}% RMS / {est.percent_range:.3f}% range",
        "n/a" if result.median_rt_ms is None else f"{result.median_rt_ms:.0f}ms",
    )
    for r in result.records:
        out.debug(
            "trial=%d contrast=%.4f rms=%.4f signal=%d choice=%d correct=%d "
            "reversal=%d rt_ms=%.0f effective_hz=%s",
            r.index,
            r.contrast_pct,
            r.rms_contrast_pct,
            r.signal_interval,
            r.choice,
            int(r.correct),
            int(r.reversal),
            r.response_time_s * 1000.0,
            "n/a" if r.quality is None else f"{r.quality.effective_hz:.2f}",
        )
