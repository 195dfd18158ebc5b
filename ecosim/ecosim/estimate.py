"""Closed-form parameter seed from two line segments fit to the binning curve."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import math
from typing import Iterable, List, Sequence, Tuple

import numpy as np
from scipy.stats import linregress

from .binning import BinLevel, sort_bins
from .errors import DomainViolationError
from .parameters import ParameterSet

logger = logging.getLogger(__name__)

SEGMENT_ERROR_THRESHOLD = 0.1


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True)
class Line:
    m: float
    b: float

    def __call__(self, x: float) -> float:
        return self.m * x + self.b

    def intersect(self, other: "Line") -> Tuple[float, float]:
        if np.isclose(self.m, other.m, rtol=1e-9, atol=1e-12):
            raise DomainViolationError("lines with equal slopes do not intersect")
        x = (other.b - self.b) / (self.m - other.m)
        return x, self(x)


def points_from_binning(length: int, bins: Iterable[BinLevel]) -> List[Point]:
    """Turn bin levels into (substitutions, log2 clusters) points by ascending x.

    Levels of a single cluster are dropped, as are levels repeating the
    previous one.
    """
    points: List[Point] = []
    previous = None
    for b in sort_bins(bins):
        if b.level == 1 or b.level == previous:
            continue
        points.append(Point(x=(1.0 - b.crit) * float(length), y=math.log2(b.level)))
        previous = b.level
    points.sort(key=lambda p: p.x)
    return points


def fit_line(points: Sequence[Point]) -> Line:
    if len(points) < 2:
        raise DomainViolationError("at least two points are needed to fit a line")
    x = np.array([p.x for p in points], dtype=float)
    y = np.array([p.y for p in points], dtype=float)
    if np.ptp(x) == 0.0:
        raise DomainViolationError("cannot fit a line to points sharing one x value")
    fit = linregress(x, y)
    return Line(m=float(fit.slope), b=float(fit.intercept))


def squared_error(point: Point, line: Line) -> float:
    """Squared perpendicular distance from `point` to `line`."""
    dist = abs(point.y - line(point.x)) / math.sqrt(line.m * line.m + 1.0)
    return dist * dist


def fit_segment(points: Sequence[Point], start: int) -> Tuple[int, int]:
    """Grow a window from `start` while new points stay near one line.

    The line goes through the first two points of the window and is not
    refit as the window grows. Returns the half-open bounds of the window.
    The first point that strays too far is left out and begins the next
    segment.
    """
    stop = start + 2
    if stop > len(points):
        raise DomainViolationError("not enough points left to fit a line segment")
    line = fit_line(points[start:stop])
    while stop < len(points) and squared_error(points[stop], line) <= SEGMENT_ERROR_THRESHOLD:
        stop += 1
    return start, stop


def estimate_from_points(points: Sequence[Point]) -> ParameterSet:
    if len(points) < 3:
        raise DomainViolationError("at least three distinct binning levels are needed")
    sigma_start, sigma_stop = fit_segment(points, 0)
    omega_start = sigma_stop
    if len(points) - omega_start < 2:
        # Share the breakpoint when fewer than two points remain.
        omega_start = len(points) - 2
    omega_start, omega_stop = fit_segment(points, omega_start)

    sigma_line = fit_line(points[sigma_start:sigma_stop])
    omega_line = fit_line(points[omega_start:omega_stop])
    _, y = omega_line.intersect(sigma_line)
    try:
        npop_real = 2.0**y
    except OverflowError:
        raise DomainViolationError("line intersection is out of range") from None
    omega = -omega_line.m
    sigma = -sigma_line.m
    if not all(math.isfinite(v) for v in (omega, sigma, npop_real)):
        raise DomainViolationError("initial estimate is not finite")
    npop = int(math.floor(npop_real + 0.5))
    if npop < 1:
        raise DomainViolationError(f"estimated npop must be >= 1, got {npop_real:.4g}")
    if omega <= 0.0 or sigma <= 0.0:
        logger.warning("non-positive rate in initial estimate: omega=%.4g sigma=%.4g", omega, sigma)
    logger.debug(
        "sigma line %d-%d m=%.4g; omega line %d-%d m=%.4g",
        sigma_start, sigma_stop, sigma_line.m, omega_start, omega_stop, omega_line.m,
    )
    return ParameterSet(omega=omega, sigma=sigma, npop=npop, likelihood=0.0)


def estimate_parameters(length: int, bins: Iterable[BinLevel]) -> ParameterSet:
    """Seed (omega, sigma, npop) from the binning curve of sequences of `length`."""
    return estimate_from_points(points_from_binning(length, bins))
