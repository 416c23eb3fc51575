"""Timeline of a single two-interval trial.

``tick()`` is called once per displayed frame. Fixed and jittered delays are
deadlines checked against the frame time, and noise intervals redraw on a
whole-frame cadence derived from the measured refresh rate, so the stimulus
update rate stays locked to the display.

    IDLE -> LEAD_IN -> INTERVAL_1 -> MASK -> ISI -> INTERVAL_2 -> AWAITING_RESPONSE
    AWAITING_RESPONSE -(accept_response)-> IDLE -(rest)-> INTER_TRIAL -(begin)-> LEAD_IN

Leaving AWAITING_RESPONSE is only ever done by ``accept_response()``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum

from .clock import RefreshRateEstimator
from .noise import SEED_MASK, SeededRng, frame_seed
from .render import (
    DEFAULT_REFRESH_HZ,
    FrameRenderer,
    QualityMetrics,
    UpdateCadence,
    effective_update_hz,
    plan_cadence,
)

logger = logging.getLogger(__name__)

INTERVAL_SEED_OFFSETS = {1: 101, 2: 303}
TRIAL_SEED_STRIDE = 7919


class TrialPhase(StrEnum):
    IDLE = "idle"
    LEAD_IN = "lead_in"
    INTERVAL_1 = "interval_1"
    MASK = "mask"
    ISI = "isi"
    INTERVAL_2 = "interval_2"
    AWAITING_RESPONSE = "awaiting_response"
    INTER_TRIAL = "inter_trial"


STIMULUS_PHASES = frozenset(
    {
        TrialPhase.LEAD_IN,
        TrialPhase.INTERVAL_1,
        TrialPhase.MASK,
        TrialPhase.ISI,
        TrialPhase.INTERVAL_2,
    }
)


@dataclass(frozen=True, slots=True)
class TrialTiming:
    lead_in_s: float = 0.2
    interval_ms_range: tuple[int, int] = (400, 600)
    mask_s: float = 0.3
    isi_ms_range: tuple[int, int] = (250, 450)
    inter_trial_s: float = 0.4
    update_hz: float = 15.0
    fallback_refresh_hz: float = DEFAULT_REFRESH_HZ

    def validate(self) -> None:
        if self.lead_in_s < 0.0:
            raise ValueError("lead_in_s must be >= 0")
        if self.mask_s < 0.0:
            raise ValueError("mask_s must be >= 0")
        if self.inter_trial_s < 0.0:
            raise ValueError("inter_trial_s must be >= 0")
        lo, hi = self.interval_ms_range
        if not (0 < lo <= hi):
            raise ValueError("interval_ms_range must satisfy 0 < lo <= hi")
        lo, hi = self.isi_ms_range
        if not (0 <= lo <= hi):
            raise ValueError("isi_ms_range must satisfy 0 <= lo <= hi")
        if self.update_hz <= 0.0:
            raise ValueError("update_hz must be > 0")
        if self.fallback_refresh_hz <= 0.0:
            raise ValueError("fallback_refresh_hz must be > 0")


@dataclass(frozen=True, slots=True)
class TrialPlan:
    token: int
    index: int
    contrast_pct: float
    signal_interval: int
    interval_ms: int
    isi_ms: int
    seed: int

    def interval_seed(self, interval: int) -> int:
        return (self.seed + INTERVAL_SEED_OFFSETS[interval]) & SEED_MASK


def _jittered_ms(rng: SeededRng, bounds: tuple[int, int]) -> int:
    lo, hi = bounds
    if hi <= lo:
        return int(lo)
    return int(rng.uniform(float(lo), float(hi)))


def plan_trial(
    *,
    rng: SeededRng,
    timing: TrialTiming,
    token: int,
    index: int,
    contrast_pct: float,
    session_seed: int,
) -> TrialPlan:
    """Draw the signal interval (50/50) and jittered durations for one trial."""

    signal_interval = 1 if rng.coin() else 2
    return TrialPlan(
        token=int(token),
        index=int(index),
        contrast_pct=float(contrast_pct),
        signal_interval=signal_interval,
        interval_ms=_jittered_ms(rng, timing.interval_ms_range),
        isi_ms=_jittered_ms(rng, timing.isi_ms_range),
        seed=(int(session_seed) + int(index) * TRIAL_SEED_STRIDE) & SEED_MASK,
    )


class TrialSequencer:
    def __init__(
        self,
        *,
        renderer: FrameRenderer,
        timing: TrialTiming | None = None,
        refresh: RefreshRateEstimator | None = None,
    ) -> None:
        self._timing = timing or TrialTiming()
        self._timing.validate()
        self._renderer = renderer
        self._refresh = refresh or RefreshRateEstimator()

        self._phase = TrialPhase.IDLE
        self._plan: TrialPlan | None = None
        self._deadline_s: float | None = None
        self._prompted_at_s: float | None = None

        self._cadence: UpdateCadence | None = None
        self._interval_started_s = 0.0
        self._frame_count = 0
        self._updates = 0
        self._pending_quality: QualityMetrics | None = None

    @property
    def phase(self) -> TrialPhase:
        return self._phase

    @property
    def plan(self) -> TrialPlan | None:
        return self._plan

    @property
    def timing(self) -> TrialTiming:
        return self._timing

    @property
    def prompted_at_s(self) -> float | None:
        return self._prompted_at_s

    @property
    def awaiting_response(self) -> bool:
        return self._phase is TrialPhase.AWAITING_RESPONSE

    @property
    def current_interval(self) -> int | None:
        if self._phase is TrialPhase.INTERVAL_1:
            return 1
        if self._phase is TrialPhase.INTERVAL_2:
            return 2
        return None

    @property
    def cadence(self) -> UpdateCadence | None:
        return self._cadence

    def begin(self, plan: TrialPlan, now: float) -> bool:
        if self._phase not in (TrialPhase.IDLE, TrialPhase.INTER_TRIAL):
            return False
        self._plan = plan
        self._prompted_at_s = None
        self._pending_quality = None
        self._cadence = None
        logger.debug(
            "Trial %d: contrast=%.3f%% signal=%d interval=%dms isi=%dms",
            plan.index,
            plan.contrast_pct,
            plan.signal_interval,
            plan.interval_ms,
            plan.isi_ms,
        )
        self._renderer.draw_blank()
        self._enter(TrialPhase.LEAD_IN, now)
        return True

    def tick(self, now: float) -> None:
        # Zero-length phases may chain within one frame; the bound keeps it finite.
        for _ in range(len(TrialPhase)):
            phase = self._phase
            if phase not in STIMULUS_PHASES:
                return
            if self._is_signal_phase(phase):
                if not self._step_noise(now):
                    return
            elif self._deadline_s is None or now < self._deadline_s:
                return
            self._enter(self._next_phase(phase), now)
            if self._is_signal_phase(self._phase):
                # The opening frame of a noise interval is its update 0.
                return

    def accept_response(self) -> TrialPlan | None:
        """Close the response gate and hand back the plan it belonged to."""

        if self._phase is not TrialPhase.AWAITING_RESPONSE:
            return None
        plan = self._plan
        self._phase = TrialPhase.IDLE
        self._deadline_s = None
        return plan

    def rest(self, now: float) -> None:
        if self._phase is not TrialPhase.IDLE:
            return
        self._phase = TrialPhase.INTER_TRIAL
        self._deadline_s = now + self._timing.inter_trial_s

    def rest_elapsed(self, now: float) -> bool:
        return (
            self._phase is TrialPhase.INTER_TRIAL
            and self._deadline_s is not None
            and now >= self._deadline_s
        )

    def cancel(self) -> None:
        self._phase = TrialPhase.IDLE
        self._plan = None
        self._deadline_s = None
        self._prompted_at_s = None
        self._cadence = None
        self._pending_quality = None
        self._renderer.draw_blank()

    def pop_quality(self) -> QualityMetrics | None:
        quality = self._pending_quality
        self._pending_quality = None
        return quality

    def redraw_neutral(self) -> None:
        """Repaint after the display surface changed underneath us."""

        phase = self._phase
        if phase in (TrialPhase.INTERVAL_1, TrialPhase.INTERVAL_2) and not self._is_signal_phase(phase):
            self._renderer.draw_fixation()
        else:
            self._renderer.draw_blank()

    def _is_signal_phase(self, phase: TrialPhase) -> bool:
        plan = self._plan
        if plan is None:
            return False
        if phase is TrialPhase.INTERVAL_1:
            return plan.signal_interval == 1
        if phase is TrialPhase.INTERVAL_2:
            return plan.signal_interval == 2
        return False

    @staticmethod
    def _next_phase(phase: TrialPhase) -> TrialPhase:
        order = (
            TrialPhase.LEAD_IN,
            TrialPhase.INTERVAL_1,
            TrialPhase.MASK,
            TrialPhase.ISI,
            TrialPhase.INTERVAL_2,
            TrialPhase.AWAITING_RESPONSE,
        )
        return order[order.index(phase) + 1]

    def _enter(self, phase: TrialPhase, now: float) -> None:
        plan = self._plan
        assert plan is not None
        self._phase = phase
        timing = self._timing

        if phase is TrialPhase.LEAD_IN:
            self._deadline_s = now + timing.lead_in_s
        elif phase in (TrialPhase.INTERVAL_1, TrialPhase.INTERVAL_2):
            self._deadline_s = now + plan.interval_ms / 1000.0
            if self._is_signal_phase(phase):
                self._start_noise(now)
            else:
                self._renderer.draw_fixation()
        elif phase is TrialPhase.MASK:
            self._renderer.draw_blank()
            self._deadline_s = now + timing.mask_s
        elif phase is TrialPhase.ISI:
            self._deadline_s = now + plan.isi_ms / 1000.0
        elif phase is TrialPhase.AWAITING_RESPONSE:
            self._renderer.draw_blank()
            self._deadline_s = None
            self._prompted_at_s = now

    def _start_noise(self, now: float) -> None:
        self._cadence = plan_cadence(
            self._refresh.estimate_hz(),
            self._timing.update_hz,
            fallback_refresh_hz=self._timing.fallback_refresh_hz,
        )
        self._interval_started_s = now
        self._frame_count = 0
        self._updates = 0
        self._draw_noise_update(0)

    def _step_noise(self, now: float) -> bool:
        """Advance one display frame of a noise interval; True once it has ended."""

        plan = self._plan
        cadence = self._cadence
        assert plan is not None and cadence is not None

        elapsed_s = now - self._interval_started_s
        if elapsed_s >= plan.interval_ms / 1000.0:
            interval = 1 if self._phase is TrialPhase.INTERVAL_1 else 2
            self._pending_quality = QualityMetrics(
                trial_index=plan.index,
                interval=interval,
                contrast_pct=plan.contrast_pct,
                refresh_hz=cadence.refresh_hz,
                frames_per_update=cadence.frames_per_update,
                intended_hz=cadence.intended_hz,
                effective_hz=effective_update_hz(self._updates, elapsed_s, cadence.intended_hz),
                updates=self._updates,
                elapsed_ms=elapsed_s * 1000.0,
            )
            return True

        self._frame_count += 1
        if self._frame_count % cadence.frames_per_update == 0:
            self._draw_noise_update(self._frame_count // cadence.frames_per_update)
        return False

    def _draw_noise_update(self, update_index: int) -> None:
        plan = self._plan
        assert plan is not None
        seed = frame_seed(plan.interval_seed(plan.signal_interval), update_index)
        self._renderer.draw_noise_frame(seed=seed, contrast_pct=plan.contrast_pct)
        self._updates += 1
