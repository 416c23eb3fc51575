from __future__ import annotations

import logging
import math
import statistics
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import IntEnum, StrEnum

from .noise import clamp

logger = logging.getLogger(__name__)


class Direction(IntEnum):
    HARDER = -1  # lower contrast
    EASIER = 1  # higher contrast


class StopReason(StrEnum):
    TRIALS = "trials"
    REVERSALS = "reversals"
    CONVERGED = "converged"


@dataclass(frozen=True, slots=True)
class StaircaseConfig:
    start_contrast_pct: float = 15.0
    initial_step_pct: float = 15.0
    # (reversal count reached, step size from then on)
    step_schedule: tuple[tuple[int, float], ...] = ((3, 8.0), (6, 4.0))
    n_down: int = 3
    min_contrast_pct: float = 0.1
    max_contrast_pct: float = 100.0

    max_trials: int = 80
    max_reversals: int = 10
    convergence_reversals: int = 6
    convergence_log_sd: float = 0.02


@dataclass(slots=True)
class SessionState:
    """Mutable state of one staircase session.

    Created by ``StaircaseRule.new_session()`` on start and replaced wholesale
    on restart; the reversal list only ever grows in between.
    """

    contrast_pct: float
    step_pct: float
    running: bool = False
    trial_index: int = 0
    correct: int = 0
    incorrect: int = 0
    reversals: list[float] = field(default_factory=list)
    consecutive_correct: int = 0
    last_direction: Direction | None = None
    stop_reason: StopReason | None = None


@dataclass(frozen=True, slots=True)
class StaircaseStep:
    correct: bool
    direction: Direction | None
    reversal: bool
    contrast_before_pct: float
    contrast_after_pct: float
    step_pct: float
    next_step_pct: float


class StaircaseRule:
    """n-down/1-up staircase with multiplicative, log-symmetric steps.

    - ``n_down`` consecutive correct responses lower contrast by dividing it by
      ``1 + step/100``; any incorrect response raises it by the same factor.
    - A reversal is logged (with the pre-update contrast) whenever the applied
      direction differs from the previous applied direction.
    - The step shrinks at the reversal milestones in ``step_schedule`` and is
      never allowed to grow within a session.
    """

    def __init__(self, config: StaircaseConfig | None = None) -> None:
        cfg = config or StaircaseConfig()

        if cfg.n_down < 1:
            raise ValueError("n_down must be >= 1")
        if not (0.0 < cfg.min_contrast_pct <= cfg.max_contrast_pct <= 100.0):
            raise ValueError("contrast bounds must satisfy 0 < min <= max <= 100")
        if not (cfg.min_contrast_pct <= cfg.start_contrast_pct <= cfg.max_contrast_pct):
            raise ValueError("start_contrast_pct must lie within the contrast bounds")
        if cfg.initial_step_pct <= 0.0:
            raise ValueError("initial_step_pct must be > 0")
        last_milestone = 0
        for milestone, size in cfg.step_schedule:
            if milestone <= last_milestone:
                raise ValueError("step_schedule milestones must be increasing and >= 1")
            if size <= 0.0:
                raise ValueError("step_schedule sizes must be > 0")
            last_milestone = milestone
        if cfg.max_trials < 1:
            raise ValueError("max_trials must be >= 1")
        if cfg.max_reversals < 1:
            raise ValueError("max_reversals must be >= 1")
        if cfg.convergence_reversals < 2:
            raise ValueError("convergence_reversals must be >= 2")
        if cfg.convergence_log_sd < 0.0:
            raise ValueError("convergence_log_sd must be >= 0")

        self._cfg = cfg

    @property
    def config(self) -> StaircaseConfig:
        return self._cfg

    def new_session(self) -> SessionState:
        return SessionState(
            contrast_pct=float(self._cfg.start_contrast_pct),
            step_pct=float(self._cfg.initial_step_pct),
        )

    def step_for_reversals(self, count: int) -> float:
        step = float(self._cfg.initial_step_pct)
        for milestone, size in self._cfg.step_schedule:
            if count >= milestone:
                step = min(step, float(size))
        return step

    def apply(self, state: SessionState, *, correct: bool) -> StaircaseStep:
        """Score one response and move the staircase in place."""

        cfg = self._cfg
        before = float(state.contrast_pct)
        step_used = float(state.step_pct)

        state.trial_index += 1
        if correct:
            state.correct += 1
        else:
            state.incorrect += 1

        direction: Direction | None = None
        if correct:
            state.consecutive_correct += 1
            if state.consecutive_correct >= cfg.n_down:
                direction = Direction.HARDER
                state.consecutive_correct = 0
        else:
            direction = Direction.EASIER
            state.consecutive_correct = 0

        reversal = False
        if direction is not None:
            if state.last_direction is not None and state.last_direction is not direction:
                state.reversals.append(before)
                reversal = True
            state.last_direction = direction

            factor = 1.0 + step_used / 100.0
            moved = before * factor if direction is Direction.EASIER else before / factor
            state.contrast_pct = clamp(moved, cfg.min_contrast_pct, cfg.max_contrast_pct)

            if reversal:
                shrunk = min(state.step_pct, self.step_for_reversals(len(state.reversals)))
                if shrunk < state.step_pct:
                    logger.debug(
                        "Step %.2f%% -> %.2f%% after %d reversals",
                        state.step_pct,
                        shrunk,
                        len(state.reversals),
                    )
                state.step_pct = shrunk

        return StaircaseStep(
            correct=bool(correct),
            direction=direction,
            reversal=reversal,
            contrast_before_pct=before,
            contrast_after_pct=float(state.contrast_pct),
            step_pct=step_used,
            next_step_pct=float(state.step_pct),
        )

    def has_converged(self, reversals: Sequence[float]) -> bool:
        k = self._cfg.convergence_reversals
        if len(reversals) < k:
            return False
        logs = [math.log(v) for v in reversals[-k:]]
        return statistics.pstdev(logs) <= self._cfg.convergence_log_sd

    def evaluate_stop(self, state: SessionState) -> StopReason | None:
        if state.trial_index >= self._cfg.max_trials:
            return StopReason.TRIALS
        if len(state.reversals) >= self._cfg.max_reversals:
            return StopReason.REVERSALS
        if self.has_converged(state.reversals):
            return StopReason.CONVERGED
        return None
