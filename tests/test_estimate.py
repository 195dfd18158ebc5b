from __future__ import annotations

import math

import pytest

from ecosim.binning import BinLevel, read_binning, sort_bins
from ecosim.errors import DomainViolationError
from ecosim.estimate import (
    Line,
    Point,
    estimate_from_points,
    estimate_parameters,
    fit_line,
    fit_segment,
    points_from_binning,
    squared_error,
)


REALISTIC_BINS = [
    BinLevel(1.0, 64),
    BinLevel(0.995, 40),
    BinLevel(0.99, 25),
    BinLevel(0.985, 16),
    BinLevel(0.98, 14),
    BinLevel(0.97, 12),
    BinLevel(0.95, 9),
    BinLevel(0.90, 5),
    BinLevel(0.80, 2),
    BinLevel(0.70, 1),
]


def _two_segments(second_intercept: float, second_slope: float, second_xs) -> list[Point]:
    first = [Point(x, 8.0 - 0.05 * x) for x in (0.0, 10.0, 20.0, 30.0)]
    second = [Point(x, second_intercept + second_slope * x) for x in second_xs]
    return first + second


def test_points_drop_singletons_and_repeats():
    bins = [
        BinLevel(0.95, 10),
        BinLevel(0.5, 1),
        BinLevel(1.0, 10),
        BinLevel(0.8, 5),
        BinLevel(0.9, 10),
    ]
    points = points_from_binning(1000, bins)
    assert len(points) == 2
    assert points[0].x == pytest.approx(0.0)
    assert points[0].y == pytest.approx(math.log2(10))
    assert points[1].x == pytest.approx(200.0)
    assert points[1].y == pytest.approx(math.log2(5))


def test_points_sorted_by_ascending_x():
    points = points_from_binning(1000, REALISTIC_BINS)
    xs = [p.x for p in points]
    assert xs == sorted(xs)
    assert len(points) == 9


def test_sort_bins_rejects_out_of_domain_values():
    with pytest.raises(DomainViolationError):
        sort_bins([BinLevel(1.5, 3)])
    with pytest.raises(DomainViolationError):
        sort_bins([BinLevel(0.9, 0)])


def test_fit_line_exact():
    line = fit_line([Point(0.0, 1.0), Point(1.0, 3.0), Point(2.0, 5.0)])
    assert line.m == pytest.approx(2.0)
    assert line.b == pytest.approx(1.0)


def test_fit_line_needs_two_distinct_x():
    with pytest.raises(DomainViolationError):
        fit_line([Point(1.0, 1.0)])
    with pytest.raises(DomainViolationError):
        fit_line([Point(1.0, 1.0), Point(1.0, 2.0)])


def test_squared_error_is_perpendicular():
    line = Line(m=1.0, b=0.0)
    assert squared_error(Point(0.0, 1.0), line) == pytest.approx(0.5)
    assert squared_error(Point(3.0, 3.0), line) == pytest.approx(0.0)


def test_line_intersection():
    x, y = Line(m=-0.05, b=8.0).intersect(Line(m=-0.01, b=6.0))
    assert x == pytest.approx(50.0)
    assert y == pytest.approx(5.5)


def test_fit_segment_stops_at_break():
    points = _two_segments(6.0, -0.01, (100.0, 150.0, 200.0, 250.0))
    assert fit_segment(points, 0) == (0, 4)
    assert fit_segment(points, 4) == (4, 8)


def test_recovers_rates_from_two_segments():
    points = _two_segments(6.0, -0.01, (100.0, 150.0, 200.0, 250.0))
    estimate = estimate_from_points(points)
    assert estimate.sigma == pytest.approx(0.05)
    assert estimate.omega == pytest.approx(0.01)
    assert estimate.npop == round(2**5.5)
    assert estimate.likelihood == 0.0


def test_equal_slopes_raise():
    points = _two_segments(4.0, -0.05, (100.0, 110.0, 120.0, 130.0))
    with pytest.raises(DomainViolationError):
        estimate_from_points(points)


def test_too_few_points_raise():
    with pytest.raises(DomainViolationError):
        estimate_from_points([Point(0.0, 3.0), Point(10.0, 2.0)])
    with pytest.raises(DomainViolationError):
        estimate_parameters(1000, [BinLevel(1.0, 8), BinLevel(0.9, 1)])


def test_short_tail_shares_breakpoint():
    level = math.log2(9)
    estimate = estimate_from_points([Point(20.0, 2.0), Point(100.0, level), Point(200.0, level)])
    assert estimate.npop == 9
    assert estimate.omega == pytest.approx(0.0, abs=1e-9)
    assert estimate.sigma == pytest.approx(-(level - 2.0) / 80.0)


def test_realistic_binning_curve():
    estimate = estimate_parameters(1000, REALISTIC_BINS)
    assert estimate.omega > 0.0
    assert estimate.sigma > estimate.omega
    assert 10 <= estimate.npop <= 20


def test_read_binning(tmp_path):
    src = tmp_path / "binning.dat"
    src.write_text(
        "# crit level\n0.90 5\n\n1.00 64   # all clusters\n0.95 9\n",
        encoding="utf-8",
    )
    bins = read_binning(src)
    assert bins == [BinLevel(1.0, 64), BinLevel(0.95, 9), BinLevel(0.90, 5)]


def test_read_binning_rejects_bad_lines(tmp_path):
    src = tmp_path / "binning.dat"
    src.write_text("1.00 64\n0.95\n", encoding="utf-8")
    with pytest.raises(ValueError):
        read_binning(src)


def test_collapsed_binning_curve_is_rejected():
    bins = [BinLevel(1.0, 1), BinLevel(0.98, 4), BinLevel(0.95, 4), BinLevel(0.90, 9), BinLevel(0.80, 9)]
    points = points_from_binning(1000, bins)
    assert [p.x for p in points] == pytest.approx([20.0, 100.0])
    assert [p.y for p in points] == pytest.approx([2.0, math.log2(9)])
    with pytest.raises(DomainViolationError):
        estimate_parameters(1000, bins)


def test_segment_tests_points_against_first_two_points():
    points = [Point(0.0, 0.0), Point(1.0, 0.0), Point(2.0, 0.3), Point(3.0, 0.7), Point(50.0, 9.0)]
    # A line refit over the first four points would keep (3, 0.7).
    assert fit_segment(points, 0) == (0, 3)
