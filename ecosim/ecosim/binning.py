"""Binning curve container and reader."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List

from .errors import DomainViolationError


@dataclass(frozen=True)
class BinLevel:
    """Number of sequence clusters at one similarity criterion."""

    crit: float
    level: int


def sort_bins(bins: Iterable[BinLevel]) -> List[BinLevel]:
    """Validate bin levels and order them by decreasing criterion."""
    out = []
    for b in bins:
        if not 0.0 <= float(b.crit) <= 1.0:
            raise DomainViolationError(f"criterion must be in [0, 1]: {b.crit}")
        if int(b.level) < 1:
            raise DomainViolationError(f"cluster count must be positive: {b.level}")
        out.append(BinLevel(crit=float(b.crit), level=int(b.level)))
    return sorted(out, key=lambda b: b.crit, reverse=True)


def read_binning(path: str | Path) -> List[BinLevel]:
    """Read ``crit level`` pairs, one per line; ``#`` starts a comment."""
    bins: List[BinLevel] = []
    with open(path, "r", encoding="utf-8") as handle:
        for lineno, line in enumerate(handle, start=1):
            line = line.split("#", 1)[0].strip()
            if not line:
                continue
            fields = line.split()
            if len(fields) < 2:
                raise ValueError(f"{path}:{lineno}: expected 'crit level'")
            bins.append(BinLevel(crit=float(fields[0]), level=int(fields[1])))
    return sort_bins(bins)
