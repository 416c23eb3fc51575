from __future__ import annotations

import logging
from dataclasses import dataclass, field

import pygame

from .clock import Clock, RefreshRateEstimator
from .noise import SEED_MASK, SeededRng
from .render import FrameRenderer, QualityMetrics
from .sequencer import TrialPhase, TrialPlan, TrialSequencer, TrialTiming, plan_trial
from .staircase import SessionState, StaircaseConfig, StaircaseRule, StopReason
from .threshold import (
    DEFAULT_WINDOW,
    MIN_REVERSALS,
    ThresholdEstimate,
    ThresholdMethod,
    estimate_threshold,
    percent_range_to_rms_percent,
)

logger = logging.getLogger(__name__)

SESSION_SEED_STRIDE = 104729

STOP_REASON_TEXT = {
    StopReason.TRIALS: "Maximum number of trials reached",
    StopReason.REVERSALS: "Maximum number of reversals reached",
    StopReason.CONVERGED: "Threshold converged",
}


@dataclass(frozen=True, slots=True)
class ThresholdTestConfig:
    staircase: StaircaseConfig = field(default_factory=StaircaseConfig)
    timing: TrialTiming = field(default_factory=TrialTiming)
    block_px: int = 2
    threshold_method: ThresholdMethod = ThresholdMethod.GEOMETRIC
    threshold_min_reversals: int = MIN_REVERSALS
    threshold_window: int = DEFAULT_WINDOW


@dataclass(frozen=True, slots=True)
class TrialRecord:
    index: int
    token: int
    contrast_pct: float
    rms_contrast_pct: float
    signal_interval: int
    choice: int
    correct: bool
    direction: int | None
    reversal: bool
    contrast_after_pct: float
    step_pct: float
    interval_ms: int
    isi_ms: int
    prompted_at_s: float
    answered_at_s: float
    response_time_s: float
    quality: QualityMetrics | None = None


@dataclass(frozen=True, slots=True)
class EngineSnapshot:
    """View model for the UI (pure data)."""

    title: str
    prompt: str
    running: bool
    instructions_visible: bool
    completion_visible: bool
    phase: TrialPhase
    trial_index: int
    awaiting_response: bool
    awaiting_token: int | None
    current_interval: int | None
    correct: int
    incorrect: int
    reversal_count: int
    contrast_pct: float | None
    step_pct: float | None
    threshold: ThresholdEstimate | None
    stop_reason: StopReason | None


class ContrastThresholdEngine:
    """2IFC staircase for the contrast detection threshold of dynamic noise.

    - Deterministic: signal intervals, jitter and noise movies derive from the seed.
    - Time is entirely via injected Clock; ``update()`` is the per-frame callback.
    - Commands never raise on misuse; they return False or do nothing.
    """

    def __init__(
        self,
        *,
        clock: Clock,
        seed: int,
        config: ThresholdTestConfig | None = None,
        surface: pygame.Surface | None = None,
    ) -> None:
        cfg = config or ThresholdTestConfig()

        if cfg.threshold_min_reversals < 1:
            raise ValueError("threshold_min_reversals must be >= 1")
        if cfg.threshold_window < 1:
            raise ValueError("threshold_window must be >= 1")

        self._clock = clock
        self._seed = int(seed)
        self._cfg = cfg

        self._rule = StaircaseRule(cfg.staircase)
        self._refresh = RefreshRateEstimator()
        self._renderer = FrameRenderer(surface, block_px=cfg.block_px)
        self._sequencer = TrialSequencer(
            renderer=self._renderer,
            timing=cfg.timing,
            refresh=self._refresh,
        )

        self._state: SessionState | None = None
        self._sessions_started = 0
        self._session_seed = self._seed & SEED_MASK
        self._rng = SeededRng(self._session_seed)
        self._next_token = 0

        self._instructions_visible = False
        self._completion_visible = False

        self._trials: list[TrialRecord] = []
        self._quality: list[QualityMetrics] = []
        self._trial_quality: QualityMetrics | None = None

    @property
    def seed(self) -> int:
        return self._seed

    @property
    def session_seed(self) -> int:
        return self._session_seed

    @property
    def config(self) -> ThresholdTestConfig:
        return self._cfg

    @property
    def renderer(self) -> FrameRenderer:
        return self._renderer

    @property
    def sequencer(self) -> TrialSequencer:
        return self._sequencer

    @property
    def refresh(self) -> RefreshRateEstimator:
        return self._refresh

    @property
    def state(self) -> SessionState | None:
        return self._state

    @property
    def running(self) -> bool:
        return self._state is not None and self._state.running

    @property
    def stop_reason(self) -> StopReason | None:
        return None if self._state is None else self._state.stop_reason

    @property
    def instructions_visible(self) -> bool:
        return self._instructions_visible

    @property
    def completion_visible(self) -> bool:
        return self._completion_visible

    # Commands

    def start(self) -> None:
        if self.running:
            return
        self._completion_visible = False
        self._instructions_visible = True

    def confirm_start(self) -> None:
        if self.running:
            return
        self._instructions_visible = False
        self.start_session()

    def stop(self) -> None:
        self._instructions_visible = False
        self.stop_session()

    def respond(self, choice: int, *, token: int | None = None) -> bool:
        return self.record_response(choice, token=token)

    def dismiss_completion(self) -> None:
        self._completion_visible = False

    # Controller operations

    def start_session(self) -> None:
        if self.running:
            return

        self._sessions_started += 1
        self._session_seed = (
            self._seed + (self._sessions_started - 1) * SESSION_SEED_STRIDE
        ) & SEED_MASK
        self._rng = SeededRng(self._session_seed)

        state = self._rule.new_session()
        state.running = True
        self._state = state
        self._completion_visible = False
        self._trials = []
        self._quality = []
        self._trial_quality = None
        self._sequencer.cancel()

        logger.info(
            "Session started: seed=%d start=%.2f%% step=%.2f%% %d-down/1-up",
            self._session_seed,
            state.contrast_pct,
            state.step_pct,
            self._rule.config.n_down,
        )
        self._begin_next_trial(self._clock.now())

    def record_response(self, choice: int, *, token: int | None = None) -> bool:
        """Score a response to the trial awaiting one. Returns True if accepted.

        ``token`` pins the response to the trial that was prompted; a response
        carrying a superseded token is dropped.
        """

        state = self._state
        if state is None or not state.running:
            return False
        if choice not in (1, 2):
            return False
        pending = self._sequencer.plan
        if not self._sequencer.awaiting_response or pending is None:
            return False
        if token is not None and token != pending.token:
            return False

        prompted_at_s = self._sequencer.prompted_at_s
        plan = self._sequencer.accept_response()
        assert plan is not None
        now = self._clock.now()
        if prompted_at_s is None:
            prompted_at_s = now

        correct = int(choice) == plan.signal_interval
        step = self._rule.apply(state, correct=correct)
        self._trials.append(
            TrialRecord(
                index=plan.index,
                token=plan.token,
                contrast_pct=plan.contrast_pct,
                rms_contrast_pct=percent_range_to_rms_percent(plan.contrast_pct),
                signal_interval=plan.signal_interval,
                choice=int(choice),
                correct=correct,
                direction=None if step.direction is None else int(step.direction),
                reversal=step.reversal,
                contrast_after_pct=step.contrast_after_pct,
                step_pct=step.step_pct,
                interval_ms=plan.interval_ms,
                isi_ms=plan.isi_ms,
                prompted_at_s=prompted_at_s,
                answered_at_s=now,
                response_time_s=max(0.0, now - prompted_at_s),
                quality=self._trial_quality,
            )
        )
        logger.debug(
            "Trial %d: choice=%d signal=%d %s contrast %.3f%% -> %.3f%%%s",
            plan.index,
            choice,
            plan.signal_interval,
            "correct" if correct else "incorrect",
            step.contrast_before_pct,
            step.contrast_after_pct,
            " (reversal)" if step.reversal else "",
        )

        reason = self._rule.evaluate_stop(state)
        if reason is not None:
            self._finish(reason)
        else:
            self._sequencer.rest(now)
        return True

    def stop_session(self) -> None:
        state = self._state
        if state is None or not state.running:
            return
        state.running = False
        self._sequencer.cancel()
        logger.info("Session stopped after %d trials", state.trial_index)

    # Frame callback

    def update(self) -> None:
        now = self._clock.now()
        self._refresh.observe(now)
        if not self.running:
            return

        if self._sequencer.rest_elapsed(now):
            self._begin_next_trial(now)
        self._sequencer.tick(now)

        quality = self._sequencer.pop_quality()
        if quality is not None:
            self._trial_quality = quality
            self._quality.append(quality)

    def on_surface_changed(self, surface: pygame.Surface | None) -> None:
        self._renderer.attach(surface)
        # A mode switch may change the refresh rate.
        self._refresh.reset()
        self._sequencer.redraw_neutral()

    # Observable state

    def reversals(self) -> tuple[float, ...]:
        if self._state is None:
            return ()
        return tuple(self._state.reversals)

    def threshold(self) -> ThresholdEstimate | None:
        return estimate_threshold(
            self.reversals(),
            method=self._cfg.threshold_method,
            min_reversals=self._cfg.threshold_min_reversals,
            window=self._cfg.threshold_window,
        )

    def trial_log(self) -> list[TrialRecord]:
        return list(self._trials)

    def quality_log(self) -> list[QualityMetrics]:
        return list(self._quality)

    def snapshot(self) -> EngineSnapshot:
        state = self._state
        plan = self._sequencer.plan
        awaiting = self.running and self._sequencer.awaiting_response
        return EngineSnapshot(
            title="Visual Noise Contrast Threshold",
            prompt=self.current_prompt(),
            running=self.running,
            instructions_visible=self._instructions_visible,
            completion_visible=self._completion_visible,
            phase=self._sequencer.phase,
            trial_index=0 if state is None else state.trial_index,
            awaiting_response=awaiting,
            awaiting_token=plan.token if awaiting and plan is not None else None,
            current_interval=self._sequencer.current_interval,
            correct=0 if state is None else state.correct,
            incorrect=0 if state is None else state.incorrect,
            reversal_count=0 if state is None else len(state.reversals),
            contrast_pct=None if state is None else state.contrast_pct,
            step_pct=None if state is None else state.step_pct,
            threshold=self.threshold(),
            stop_reason=self.stop_reason,
        )

    def current_prompt(self) -> str:
        if self._instructions_visible:
            return "\n".join(
                [
                    "Visual Noise Contrast Threshold",
                    "",
                    "Each trial shows two intervals around a central dot.",
                    "One interval contains flickering noise; the other is blank.",
                    "Keep your eyes on the dot.",
                    "",
                    "Press 1 if the noise was in the first interval, 2 if in the second.",
                    "Guess if unsure. The noise gets fainter as you succeed.",
                    "",
                    "Press Enter to begin, Escape to cancel.",
                ]
            )
        if self._completion_visible:
            return self._completion_text()
        if self.running:
            if self._sequencer.awaiting_response:
                return "Which interval contained the noise? Press 1 or 2."
            return ""
        return "Press Space to start."

    # Internals

    def _completion_text(self) -> str:
        state = self._state
        assert state is not None
        reason = state.stop_reason
        est = self.threshold()
        lines = [
            "Session complete",
            "",
            STOP_REASON_TEXT.get(reason, "Stopped") if reason is not None else "Stopped",
        ]
        if est is None:
            lines.append("Threshold: not enough reversals")
        else:
            lines.append(
                f"Threshold: {est.rms_percent:.2f}% RMS ({est.percent_range:.2f}% of range)"
            )
        lines.extend(
            [
                f"Reversals: {len(state.reversals)}",
                f"Trials: {state.trial_index}",
                f"Correct: {state.correct}",
                "",
                "Press Enter to run again, Escape to quit.",
            ]
        )
        return "\n".join(lines)

    def _begin_next_trial(self, now: float) -> None:
        state = self._state
        assert state is not None
        self._next_token += 1
        plan: TrialPlan = plan_trial(
            rng=self._rng,
            timing=self._cfg.timing,
            token=self._next_token,
            index=state.trial_index + 1,
            contrast_pct=state.contrast_pct,
            session_seed=self._session_seed,
        )
        self._trial_quality = None
        self._sequencer.begin(plan, now)

    def _finish(self, reason: StopReason) -> None:
        state = self._state
        assert state is not None
        state.stop_reason = reason
        state.running = False
        self._sequencer.cancel()
        self._completion_visible = True

        est = self.threshold()
        logger.info(
            "Session finished (%s): trials=%d correct=%d reversals=%d threshold=%s",
            reason,
            state.trial_index,
            state.correct,
            len(state.reversals),
            "n/a" if est is None else f"{est.rms_percent:.3f}% RMS",
        )


def build_contrast_threshold_test(
    *,
    clock: Clock,
    seed: int,
    config: ThresholdTestConfig | None = None,
    surface: pygame.Surface | None = None,
) -> ContrastThresholdEngine:
    return ContrastThresholdEngine(
        clock=clock,
        seed=seed,
        config=config,
        surface=surface,
    )
