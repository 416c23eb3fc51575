from __future__ import annotations

import random

import pytest

from vss_threshold.staircase import (
    Direction,
    StaircaseConfig,
    StaircaseRule,
    StopReason,
)


def test_new_session_uses_configured_start_and_step() -> None:
    rule = StaircaseRule()
    state = rule.new_session()
    assert state.contrast_pct == 15.0
    assert state.step_pct == 15.0
    assert state.trial_index == 0
    assert state.reversals == []
    assert state.last_direction is None
    assert state.stop_reason is None


def test_three_down_one_up_moves_after_three_correct() -> None:
    rule = StaircaseRule()
    state = rule.new_session()

    s1 = rule.apply(state, correct=True)
    s2 = rule.apply(state, correct=True)
    assert s1.direction is None and s2.direction is None
    assert state.contrast_pct == 15.0

    s3 = rule.apply(state, correct=True)
    assert s3.direction is Direction.HARDER
    assert s3.reversal is False
    assert state.contrast_pct == pytest.approx(15.0 / 1.15)
    assert state.consecutive_correct == 0


def test_incorrect_steps_easier_immediately_and_first_move_is_not_a_reversal() -> None:
    rule = StaircaseRule()
    state = rule.new_session()

    rule.apply(state, correct=True)
    step = rule.apply(state, correct=False)
    assert step.direction is Direction.EASIER
    assert step.reversal is False
    assert state.reversals == []
    assert state.consecutive_correct == 0
    assert state.contrast_pct == pytest.approx(15.0 * 1.15)
    assert (state.correct, state.incorrect, state.trial_index) == (1, 1, 2)


def test_two_down_one_up_reversals_match_hand_computed_sequence() -> None:
    rule = StaircaseRule(StaircaseConfig(n_down=2))
    state = rule.new_session()

    responses = [True, True, False, False, True, True]
    steps = [rule.apply(state, correct=r) for r in responses]

    assert [s.direction for s in steps] == [
        None,
        Direction.HARDER,
        Direction.EASIER,
        Direction.EASIER,
        None,
        Direction.HARDER,
    ]
    assert [s.reversal for s in steps] == [False, False, True, False, False, True]

    # Reversals log the level in force before the update that flipped direction.
    assert len(state.reversals) == 2
    assert state.reversals[0] == pytest.approx(15.0 / 1.15)
    assert state.reversals[1] == pytest.approx(15.0 * 1.15)
    assert state.contrast_pct == pytest.approx(15.0)


def test_step_shrinks_at_reversal_milestones_after_the_flipping_update() -> None:
    rule = StaircaseRule(StaircaseConfig(n_down=1))
    state = rule.new_session()

    # With n_down=1, every change of answer flips direction.
    steps = [rule.apply(state, correct=(i % 2 == 0)) for i in range(8)]
    reversal_counts = [sum(1 for s in steps[: i + 1] if s.reversal) for i in range(8)]
    assert reversal_counts == [0, 1, 2, 3, 4, 5, 6, 7]

    third = steps[3]
    assert third.reversal is True
    assert third.step_pct == 15.0
    assert third.next_step_pct == 8.0

    sixth = steps[6]
    assert sixth.step_pct == 8.0
    assert sixth.next_step_pct == 4.0
    assert state.step_pct == 4.0


def test_step_never_grows_within_a_session() -> None:
    rule = StaircaseRule(StaircaseConfig(n_down=2))
    state = rule.new_session()
    rng = random.Random(11)

    last = state.step_pct
    for _ in range(200):
        rule.apply(state, correct=rng.random() < 0.7)
        assert state.step_pct <= last
        last = state.step_pct


def test_step_for_reversals_schedule() -> None:
    rule = StaircaseRule()
    assert rule.step_for_reversals(0) == 15.0
    assert rule.step_for_reversals(2) == 15.0
    assert rule.step_for_reversals(3) == 8.0
    assert rule.step_for_reversals(5) == 8.0
    assert rule.step_for_reversals(6) == 4.0
    assert rule.step_for_reversals(40) == 4.0


def test_contrast_is_clamped_to_floor_and_ceiling() -> None:
    rule = StaircaseRule(StaircaseConfig(n_down=1, initial_step_pct=90.0, step_schedule=()))

    state = rule.new_session()
    for _ in range(300):
        rule.apply(state, correct=True)
        assert state.contrast_pct >= 0.1
    assert state.contrast_pct == 0.1

    state = rule.new_session()
    for _ in range(300):
        rule.apply(state, correct=False)
        assert state.contrast_pct <= 100.0
    assert state.contrast_pct == 100.0


def test_alternating_responses_stop_on_trial_limit_exactly_at_80() -> None:
    rule = StaircaseRule()
    state = rule.new_session()

    for i in range(79):
        rule.apply(state, correct=(i % 2 == 0))
        assert rule.evaluate_stop(state) is None

    rule.apply(state, correct=False)
    assert state.trial_index == 80
    assert state.reversals == []
    assert rule.evaluate_stop(state) is StopReason.TRIALS


def test_reversal_limit_stops_without_convergence() -> None:
    cfg = StaircaseConfig(n_down=1, convergence_log_sd=0.0)
    rule = StaircaseRule(cfg)
    state = rule.new_session()

    # First response sets the direction; each later alternation is a reversal.
    for i in range(10):
        rule.apply(state, correct=(i % 2 == 0))
        assert rule.evaluate_stop(state) is None
    rule.apply(state, correct=True)

    assert len(state.reversals) == 10
    assert rule.evaluate_stop(state) is StopReason.REVERSALS


def test_clustered_reversals_converge() -> None:
    cfg = StaircaseConfig(n_down=1, initial_step_pct=3.0, step_schedule=())
    rule = StaircaseRule(cfg)
    state = rule.new_session()

    for i in range(6):
        rule.apply(state, correct=(i % 2 == 0))
        assert rule.evaluate_stop(state) is None
    rule.apply(state, correct=True)

    assert len(state.reversals) == 6
    assert rule.has_converged(state.reversals) is True
    assert rule.evaluate_stop(state) is StopReason.CONVERGED


def test_trial_limit_takes_precedence_over_other_criteria() -> None:
    cfg = StaircaseConfig(n_down=1, max_trials=3, max_reversals=2)
    rule = StaircaseRule(cfg)
    state = rule.new_session()
    for r in (True, False, True):
        rule.apply(state, correct=r)
    assert len(state.reversals) == 2
    assert rule.evaluate_stop(state) is StopReason.TRIALS


def test_has_converged_needs_enough_reversals() -> None:
    rule = StaircaseRule()
    assert rule.has_converged([5.0] * 5) is False
    assert rule.has_converged([5.0] * 6) is True
    assert rule.has_converged([5.0, 10.0] * 3) is False


@pytest.mark.parametrize(
    ("kwargs", "match"),
    [
        ({"n_down": 0}, "n_down"),
        ({"min_contrast_pct": 0.0}, "contrast bounds"),
        ({"min_contrast_pct": 50.0, "max_contrast_pct": 10.0}, "contrast bounds"),
        ({"start_contrast_pct": 200.0}, "start_contrast_pct"),
        ({"initial_step_pct": 0.0}, "initial_step_pct"),
        ({"step_schedule": ((3, 8.0), (3, 4.0))}, "milestones"),
        ({"step_schedule": ((3, 0.0),)}, "sizes"),
        ({"max_trials": 0}, "max_trials"),
        ({"max_reversals": 0}, "max_reversals"),
        ({"convergence_reversals": 1}, "convergence_reversals"),
        ({"convergence_log_sd": -0.1}, "convergence_log_sd"),
    ],
)
def test_invalid_config_rejected(kwargs: dict, match: str) -> None:
    with pytest.raises(ValueError, match=match):
        StaircaseRule(StaircaseConfig(**kwargs))
