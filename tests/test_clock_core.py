from __future__ import annotations

import pytest

from vss_threshold.clock import RealClock, RefreshRateEstimator


def test_real_clock_is_monotonic() -> None:
    clock = RealClock()
    a = clock.now()
    b = clock.now()
    assert b >= a


def test_estimator_is_unmeasurable_until_two_intervals() -> None:
    est = RefreshRateEstimator()
    assert est.estimate_hz() is None

    est.observe(0.0)
    assert est.estimate_hz() is None
    est.observe(1.0 / 60.0)
    assert est.sample_count == 1
    assert est.estimate_hz() is None

    est.observe(2.0 / 60.0)
    assert est.estimate_hz() == pytest.approx(60.0, rel=1e-6)


def test_estimator_uses_median_so_single_hitches_do_not_skew() -> None:
    est = RefreshRateEstimator()
    t = 0.0
    est.observe(t)
    for dt in (0.01, 0.01, 0.2, 0.01, 0.01):
        t += dt
        est.observe(t)
    assert est.estimate_hz() == pytest.approx(100.0, rel=1e-6)


def test_estimator_ignores_pauses_and_non_advancing_frames() -> None:
    est = RefreshRateEstimator(max_interval_s=0.25)
    est.observe(0.0)
    est.observe(0.01)
    est.observe(0.01)  # no time passed
    est.observe(5.0)  # stall
    est.observe(5.01)
    assert est.sample_count == 2
    assert est.estimate_hz() == pytest.approx(100.0, rel=1e-6)


def test_estimator_window_is_rolling_and_reset_clears() -> None:
    est = RefreshRateEstimator(window=4)
    t = 0.0
    est.observe(t)
    for _ in range(10):
        t += 1.0 / 144.0
        est.observe(t)
    assert est.sample_count == 4
    assert est.estimate_hz() == pytest.approx(144.0, rel=1e-6)

    est.reset()
    assert est.sample_count == 0
    assert est.estimate_hz() is None


def test_estimator_rejects_bad_configuration() -> None:
    with pytest.raises(ValueError, match="window"):
        RefreshRateEstimator(window=1)
    with pytest.raises(ValueError, match="max_interval_s"):
        RefreshRateEstimator(max_interval_s=0.0)
