"""Stimulus synthesis and drawing.

Noise frames are zero-mean around mid-gray with an RMS deviation fixed by the
requested contrast, so signal and blank intervals differ only in variance and
never in mean luminance. Fields are synthesized at ``block_px`` resolution and
scaled up with nearest-neighbour sampling.

Every drawing method is a no-op returning ``False`` when no display surface is
attached; callers keep advancing their own state either way.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np
import pygame

from .noise import NoiseSource, clamp

logger = logging.getLogger(__name__)

MID_GRAY = 127.5
MAX_LEVEL = 255.0
SQRT3 = math.sqrt(3.0)

BLANK_RGB = (127, 127, 127)
FIXATION_RGB = (51, 51, 51)

DEFAULT_REFRESH_HZ = 60.0
MAX_UPDATE_HZ = 60.0


def target_rms_level(contrast_pct: float) -> float:
    """RMS luminance deviation of uniform noise at ``contrast_pct`` of range."""

    c = clamp(float(contrast_pct) / 100.0, 0.0, 1.0)
    return (c / SQRT3) * MID_GRAY


class NoiseFieldBuffer:
    """Reusable float field indexed ``[x, y]`` to match ``pygame.surfarray``."""

    def __init__(self) -> None:
        self._field: np.ndarray | None = None
        self._allocations = 0

    @property
    def allocations(self) -> int:
        return self._allocations

    @property
    def shape(self) -> tuple[int, int] | None:
        if self._field is None:
            return None
        return (int(self._field.shape[0]), int(self._field.shape[1]))

    def ensure(self, width: int, height: int) -> np.ndarray:
        if width < 1 or height < 1:
            raise ValueError("field dimensions must be >= 1")
        field = self._field
        if field is None or field.shape != (width, height):
            field = np.empty((int(width), int(height)), dtype=np.float64)
            self._field = field
            self._allocations += 1
        return field


def synthesize_noise_field(
    seed: int,
    contrast_pct: float,
    width: int,
    height: int,
    *,
    out: np.ndarray | None = None,
) -> np.ndarray:
    """Return a ``(width, height)`` luminance field for one noise frame.

    Raw uniform deviates are scaled by ``contrast * 127.5`` around mid-gray,
    then the realized field is re-centred on exactly 127.5 and rescaled so its
    standard deviation equals the theoretical RMS of uniform noise at that
    contrast. This removes per-frame sampling variance as a cue.
    """

    if width < 1 or height < 1:
        raise ValueError("field dimensions must be >= 1")
    field = out if out is not None else np.empty((width, height), dtype=np.float64)
    if field.shape != (width, height):
        raise ValueError("out has the wrong shape")

    amplitude = clamp(float(contrast_pct) / 100.0, 0.0, 1.0) * MID_GRAY

    NoiseSource(seed).fill(field)
    field *= 2.0
    field -= 1.0
    field *= amplitude
    field += MID_GRAY
    np.clip(field, 0.0, MAX_LEVEL, out=field)

    mean = float(field.mean())
    sd = float(field.std())
    if not math.isfinite(sd) or sd <= 0.0:
        sd = 1.0

    gain = target_rms_level(contrast_pct) / sd
    field -= mean
    field *= gain
    field += MID_GRAY
    np.clip(field, 0.0, MAX_LEVEL, out=field)
    return field


@dataclass(frozen=True, slots=True)
class UpdateCadence:
    refresh_hz: float
    intended_hz: float
    frames_per_update: int
    measured: bool


def plan_cadence(
    refresh_hz: float | None,
    intended_hz: float,
    *,
    fallback_refresh_hz: float = DEFAULT_REFRESH_HZ,
) -> UpdateCadence:
    """Lock the stimulus update rate to a whole number of display frames."""

    if fallback_refresh_hz <= 0.0:
        raise ValueError("fallback_refresh_hz must be > 0")
    target = clamp(float(intended_hz), 1.0, MAX_UPDATE_HZ)

    measured = refresh_hz is not None and math.isfinite(refresh_hz) and refresh_hz > 0.0
    if measured:
        refresh = float(refresh_hz)
    else:
        logger.warning(
            "Refresh rate unavailable (%r); assuming %.1f Hz", refresh_hz, fallback_refresh_hz
        )
        refresh = float(fallback_refresh_hz)

    frames_per_update = max(1, int(math.floor(refresh / target + 0.5)))
    return UpdateCadence(
        refresh_hz=refresh,
        intended_hz=target,
        frames_per_update=frames_per_update,
        measured=bool(measured),
    )


@dataclass(frozen=True, slots=True)
class QualityMetrics:
    """Timing diagnostics for one rendered noise interval."""

    trial_index: int
    interval: int
    contrast_pct: float
    refresh_hz: float
    frames_per_update: int
    intended_hz: float
    effective_hz: float
    updates: int
    elapsed_ms: float


def effective_update_hz(updates: int, elapsed_s: float, intended_hz: float) -> float:
    if updates > 1 and elapsed_s > 0.0:
        return (updates - 1) / elapsed_s
    return float(intended_hz)


class FrameRenderer:
    """Draws blank, fixation and noise frames onto an optional pygame surface."""

    def __init__(self, surface: pygame.Surface | None = None, *, block_px: int = 2) -> None:
        if block_px < 1:
            raise ValueError("block_px must be >= 1")
        self._surface = surface
        self._block_px = int(block_px)
        self._buffer = NoiseFieldBuffer()
        self._patch: pygame.Surface | None = None
        self._scaled: pygame.Surface | None = None
        self._noise_frames = 0

    @property
    def surface(self) -> pygame.Surface | None:
        return self._surface

    @property
    def buffer(self) -> NoiseFieldBuffer:
        return self._buffer

    @property
    def noise_frames_drawn(self) -> int:
        return self._noise_frames

    def attach(self, surface: pygame.Surface | None) -> None:
        self._surface = surface

    def field_size(self) -> tuple[int, int] | None:
        size = self._surface_size()
        if size is None:
            return None
        width, height = size
        return max(1, width // self._block_px), max(1, height // self._block_px)

    def draw_blank(self) -> bool:
        surface = self._surface
        if surface is None or self._surface_size() is None:
            return False
        surface.fill(BLANK_RGB)
        return True

    def draw_fixation(self) -> bool:
        if not self.draw_blank():
            return False
        assert self._surface is not None
        self._draw_fixation_dot(self._surface)
        return True

    def draw_noise_frame(self, *, seed: int, contrast_pct: float) -> bool:
        surface = self._surface
        size = self._surface_size()
        field_size = self.field_size()
        if surface is None or size is None or field_size is None:
            return False

        fw, fh = field_size
        field = synthesize_noise_field(
            seed, contrast_pct, fw, fh, out=self._buffer.ensure(fw, fh)
        )

        patch = self._ensure_patch(fw, fh)
        px = pygame.surfarray.pixels3d(patch)
        px[:] = np.rint(field).astype(np.uint8)[:, :, np.newaxis]
        del px

        scaled = self._ensure_scaled(size)
        # transform.scale samples nearest-neighbour; smoothscale would blur blocks.
        pygame.transform.scale(patch, size, scaled)
        surface.blit(scaled, (0, 0))
        self._draw_fixation_dot(surface)
        self._noise_frames += 1
        return True

    def _surface_size(self) -> tuple[int, int] | None:
        if self._surface is None:
            return None
        width, height = self._surface.get_size()
        if width < 1 or height < 1:
            return None
        return int(width), int(height)

    def _ensure_patch(self, width: int, height: int) -> pygame.Surface:
        patch = self._patch
        if patch is None or patch.get_size() != (width, height):
            patch = pygame.Surface((width, height), 0, 32)
            self._patch = patch
        return patch

    def _ensure_scaled(self, size: tuple[int, int]) -> pygame.Surface:
        scaled = self._scaled
        if scaled is None or scaled.get_size() != size:
            scaled = pygame.Surface(size, 0, 32)
            self._scaled = scaled
        return scaled

    @staticmethod
    def _draw_fixation_dot(surface: pygame.Surface) -> None:
        width, height = surface.get_size()
        radius = max(4.0, min(8.0, width * 0.008))
        pygame.draw.circle(surface, FIXATION_RGB, (width // 2, height // 2), int(round(radius)))
