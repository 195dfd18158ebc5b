"""Run configuration passed explicitly through every search."""

from __future__ import annotations

from dataclasses import dataclass, replace

import numpy as np


@dataclass(frozen=True)
class SearchConfig:
    nu: int
    length: int
    nrep: int = 10000
    criterion: int = 1
    max_evaluations: int = 100
    stop_tolerance: float = 0.1
    workers: int = 1
    min_rate: float = 1e-7

    def validate(self) -> "SearchConfig":
        if self.nu < 1:
            raise ValueError("nu must be >= 1")
        if self.length < 1:
            raise ValueError("length must be >= 1")
        if self.nrep < 1:
            raise ValueError("nrep must be >= 1")
        if not 1 <= self.criterion <= 6:
            raise ValueError("criterion must be in [1, 6]")
        if self.max_evaluations < 1:
            raise ValueError("max_evaluations must be >= 1")
        if self.stop_tolerance < 0:
            raise ValueError("stop_tolerance must be >= 0")
        if self.workers < 1:
            raise ValueError("workers must be >= 1")
        if self.min_rate <= 0:
            raise ValueError("min_rate must be > 0")
        return self

    def with_nrep(self, nrep: int) -> "SearchConfig":
        return replace(self, nrep=int(nrep))


def draw_seed(rng: np.random.Generator) -> int:
    """Odd random seed with fewer than nine digits."""
    seed = int(rng.integers(0, 100_000_000))
    if seed % 2 == 0:
        seed += 1
    return seed
