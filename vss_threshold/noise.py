"""Deterministic random sources.

``NoiseSource`` feeds stimulus pixels; ``SeededRng`` feeds trial-level choices
(signal interval, jittered durations). Both are pure functions of their seed:
two instances built from the same seed produce identical streams, and nothing
here touches module-level random state.
"""

from __future__ import annotations

import random

import numpy as np

SEED_MASK = 0xFFFFFFFF

# Stride between per-frame seeds within one interval.
FRAME_SEED_STRIDE = 29


def frame_seed(base_seed: int, frame_index: int) -> int:
    """Seed for frame ``frame_index`` of an interval started from ``base_seed``."""

    if frame_index < 0:
        raise ValueError("frame_index must be >= 0")
    return (int(base_seed) + int(frame_index) * FRAME_SEED_STRIDE) & SEED_MASK


class NoiseSource:
    """Restartable stream of uniform values in [0, 1) keyed by a 32-bit seed."""

    def __init__(self, seed: int) -> None:
        self._seed = int(seed) & SEED_MASK
        self._gen = np.random.Generator(np.random.PCG64(self._seed))

    @property
    def seed(self) -> int:
        return self._seed

    def restart(self) -> None:
        self._gen = np.random.Generator(np.random.PCG64(self._seed))

    def next(self) -> float:
        return float(self._gen.random())

    def uniform(self, count: int) -> np.ndarray:
        if count < 0:
            raise ValueError("count must be >= 0")
        return self._gen.random(int(count))

    def fill(self, out: np.ndarray) -> np.ndarray:
        """Overwrite a float64 array in place with the next ``out.size`` values."""

        self._gen.random(out=out)
        return out


class SeededRng:
    """Simple seeded RNG wrapper to keep deterministic streams explicit."""

    def __init__(self, seed: int) -> None:
        self._rng = random.Random(int(seed))

    def uniform(self, a: float, b: float) -> float:
        return self._rng.uniform(a, b)

    def coin(self) -> bool:
        return self._rng.random() < 0.5


def clamp(x: float, lo: float, hi: float) -> float:
    return lo if x <= lo else hi if x >= hi else float(x)
