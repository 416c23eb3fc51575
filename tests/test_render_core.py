from __future__ import annotations

import math
import os

os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")

import numpy as np
import pygame
import pytest

from vss_threshold.render import (
    BLANK_RGB,
    FIXATION_RGB,
    MID_GRAY,
    FrameRenderer,
    NoiseFieldBuffer,
    effective_update_hz,
    plan_cadence,
    synthesize_noise_field,
    target_rms_level,
)


def _surface(w: int, h: int) -> pygame.Surface:
    return pygame.Surface((w, h), 0, 32)


def test_target_rms_level_matches_uniform_noise_sd() -> None:
    assert target_rms_level(100.0) == pytest.approx(MID_GRAY / math.sqrt(3.0))
    assert target_rms_level(15.0) == pytest.approx(0.15 / math.sqrt(3.0) * MID_GRAY)
    assert target_rms_level(0.0) == 0.0
    assert target_rms_level(250.0) == target_rms_level(100.0)


@pytest.mark.parametrize("contrast", [0.1, 1.0, 5.0, 15.0, 50.0, 80.0])
def test_noise_field_is_normalized_to_target_rms_at_mid_gray(contrast: float) -> None:
    field = synthesize_noise_field(1234, contrast, 64, 48)
    assert field.shape == (64, 48)
    assert float(field.std()) == pytest.approx(target_rms_level(contrast), rel=1e-9)
    assert float(field.mean()) == pytest.approx(MID_GRAY, abs=1e-9)


def test_full_contrast_field_stays_in_range_and_close_to_target() -> None:
    field = synthesize_noise_field(77, 100.0, 64, 48)
    assert float(field.min()) >= 0.0
    assert float(field.max()) <= 255.0
    assert float(field.std()) == pytest.approx(target_rms_level(100.0), rel=2e-2)
    assert float(field.mean()) == pytest.approx(MID_GRAY, abs=0.5)


def test_zero_contrast_field_is_flat_mid_gray() -> None:
    field = synthesize_noise_field(5, 0.0, 8, 8)
    assert np.all(np.isfinite(field))
    assert np.all(field == MID_GRAY)


def test_noise_field_is_deterministic_per_seed() -> None:
    a = synthesize_noise_field(9, 20.0, 16, 16)
    b = synthesize_noise_field(9, 20.0, 16, 16)
    c = synthesize_noise_field(10, 20.0, 16, 16)
    assert np.array_equal(a, b)
    assert not np.array_equal(a, c)


def test_noise_field_rejects_bad_shapes() -> None:
    with pytest.raises(ValueError):
        synthesize_noise_field(1, 10.0, 0, 4)
    with pytest.raises(ValueError):
        synthesize_noise_field(1, 10.0, 4, 4, out=np.empty((3, 4)))


def test_noise_buffer_reallocates_only_when_size_changes() -> None:
    buf = NoiseFieldBuffer()
    assert buf.shape is None

    first = buf.ensure(4, 3)
    again = buf.ensure(4, 3)
    assert first is again
    assert buf.allocations == 1

    buf.ensure(5, 3)
    assert buf.allocations == 2
    assert buf.shape == (5, 3)


def test_cadence_locks_update_rate_to_whole_frames() -> None:
    c60 = plan_cadence(60.0, 15.0)
    assert c60.frames_per_update == 4
    assert c60.measured is True

    assert plan_cadence(120.0, 15.0).frames_per_update == 8
    assert plan_cadence(144.0, 15.0).frames_per_update == 10
    assert plan_cadence(30.0, 60.0).frames_per_update == 1


def test_cadence_falls_back_when_refresh_is_degenerate() -> None:
    for bad in (None, 0.0, -5.0, float("nan"), float("inf")):
        cadence = plan_cadence(bad, 15.0)
        assert cadence.measured is False
        assert cadence.refresh_hz == 60.0
        assert cadence.frames_per_update == 4


def test_cadence_clamps_intended_rate() -> None:
    assert plan_cadence(60.0, 0.0).frames_per_update == 60
    assert plan_cadence(60.0, 500.0).frames_per_update == 1
    with pytest.raises(ValueError):
        plan_cadence(60.0, 15.0, fallback_refresh_hz=0.0)


def test_effective_update_hz() -> None:
    assert effective_update_hz(8, 0.5, 15.0) == pytest.approx(14.0)
    assert effective_update_hz(1, 0.5, 15.0) == 15.0
    assert effective_update_hz(5, 0.0, 15.0) == 15.0


def test_renderer_without_surface_is_a_safe_noop() -> None:
    renderer = FrameRenderer()
    assert renderer.field_size() is None
    assert renderer.draw_blank() is False
    assert renderer.draw_fixation() is False
    assert renderer.draw_noise_frame(seed=1, contrast_pct=50.0) is False
    assert renderer.noise_frames_drawn == 0
    assert renderer.buffer.allocations == 0


def test_renderer_blank_and_fixation() -> None:
    surface = _surface(40, 30)
    renderer = FrameRenderer(surface)

    assert renderer.draw_blank() is True
    assert tuple(surface.get_at((0, 0)))[:3] == BLANK_RGB
    assert tuple(surface.get_at((20, 15)))[:3] == BLANK_RGB

    assert renderer.draw_fixation() is True
    assert tuple(surface.get_at((20, 15)))[:3] == FIXATION_RGB
    assert tuple(surface.get_at((0, 0)))[:3] == BLANK_RGB


def test_renderer_draws_gray_noise_in_square_blocks() -> None:
    surface = _surface(40, 30)
    renderer = FrameRenderer(surface, block_px=2)

    assert renderer.draw_noise_frame(seed=321, contrast_pct=50.0) is True
    assert renderer.noise_frames_drawn == 1
    assert renderer.buffer.shape == (20, 15)

    px = pygame.surfarray.array3d(surface)
    assert np.array_equal(px[:, :, 0], px[:, :, 1])
    assert np.array_equal(px[:, :, 0], px[:, :, 2])
    assert float(px[:, :, 0].std()) > 0.0

    assert tuple(surface.get_at((0, 0))) == tuple(surface.get_at((1, 1)))
    assert tuple(surface.get_at((0, 0))) == tuple(surface.get_at((1, 0)))
    assert tuple(surface.get_at((2, 2))) == tuple(surface.get_at((3, 3)))

    assert tuple(surface.get_at((20, 15)))[:3] == FIXATION_RGB


def test_renderer_reallocates_buffer_after_surface_change() -> None:
    renderer = FrameRenderer(_surface(40, 30), block_px=2)
    renderer.draw_noise_frame(seed=1, contrast_pct=10.0)
    renderer.draw_noise_frame(seed=2, contrast_pct=10.0)
    assert renderer.buffer.allocations == 1

    renderer.attach(_surface(64, 32))
    renderer.draw_noise_frame(seed=3, contrast_pct=10.0)
    assert renderer.buffer.allocations == 2
    assert renderer.buffer.shape == (32, 16)

    renderer.attach(None)
    assert renderer.draw_noise_frame(seed=4, contrast_pct=10.0) is False
    assert renderer.noise_frames_drawn == 3


def test_renderer_rejects_bad_block_size() -> None:
    with pytest.raises(ValueError):
        FrameRenderer(block_px=0)
