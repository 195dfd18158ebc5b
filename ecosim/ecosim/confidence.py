"""Profile-likelihood confidence intervals for omega and sigma."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
import logging
from typing import Callable, Optional, Tuple

from .config import SearchConfig
from .errors import DomainViolationError
from .hillclimb import OptimizationResult, log_grid, optimize_profile, scan_grid
from .oracle import LikelihoodOracle
from .parameters import ConfidenceBound, ConfidenceInterval, ParameterSet

logger = logging.getLogger(__name__)

CONFIDENCE_REPLICATES = 1000


def profile_bound(
    oracle: LikelihoodOracle,
    estimate: ParameterSet,
    config: SearchConfig,
    *,
    parameter: str,
    bound: float,
    increments: int,
    threshold: float,
) -> ConfidenceBound:
    """Walk `parameter` from the estimate toward `bound` until the likelihood drops.

    Every trial value re-optimizes the other rate and npop. The reported
    bound is the last trial whose likelihood stayed at or above
    `threshold`. When no trial falls below it, the bound is open.
    """
    if not 0.0 <= threshold <= 1.0:
        raise ValueError("threshold must be in [0, 1]")
    if increments < 1:
        raise ValueError("increments must be >= 1")
    start = estimate.value(parameter)
    if start <= 0.0 or bound <= 0.0:
        raise DomainViolationError(f"{parameter} and its search bound must be > 0")
    values = log_grid(start, bound, increments)

    def fit(value: float, should_stop: Optional[Callable[[], bool]]) -> OptimizationResult:
        return optimize_profile(oracle, estimate, config, fixed=parameter, value=value, should_stop=should_stop)

    trials = scan_grid(values, fit, workers=config.workers, stop=lambda r: r.likelihood < threshold)
    last_value, last = trials[-1]
    if last.likelihood >= threshold:
        logger.info("no %s limit found between %.4g and %.4g", parameter, start, bound)
        return ConfidenceBound(value=last_value, likelihood=last.likelihood, bounded=False)
    if len(trials) == 1:
        return ConfidenceBound(value=last_value, likelihood=last.likelihood, bounded=True)
    inside_value, inside = trials[-2]
    return ConfidenceBound(value=inside_value, likelihood=inside.likelihood, bounded=True)


def confidence_interval(
    oracle: LikelihoodOracle,
    estimate: ParameterSet,
    config: SearchConfig,
    *,
    parameter: str,
    search_range: Tuple[float, float],
    increments: int,
    threshold: float,
) -> ConfidenceInterval:
    """Run the lower and upper searches for one rate.

    A side whose range end does not lie beyond the estimate is not
    searched; it is reported open at the estimate's own value. With two
    or more workers both searches run at once and share the worker
    budget.
    """
    low, high = float(search_range[0]), float(search_range[1])
    if not 0.0 < low < high:
        raise DomainViolationError(f"search range must satisfy 0 < low < high, got ({low:.4g}, {high:.4g})")
    value = estimate.value(parameter)
    interval = ConfidenceInterval(parameter)
    at_edge = ConfidenceBound(value=value, likelihood=estimate.likelihood, bounded=False)

    def search(bound: float, side_config: SearchConfig) -> ConfidenceBound:
        return profile_bound(
            oracle,
            estimate,
            side_config,
            parameter=parameter,
            bound=bound,
            increments=increments,
            threshold=threshold,
        )

    sides = [bound for bound, inside in ((low, low < value), (high, value < high)) if inside]
    if len(sides) < 2:
        logger.warning("%s=%.4g is at or beyond the search range (%.4g, %.4g)", parameter, value, low, high)
    if len(sides) == 2 and config.workers >= 2:
        side_config = replace(config, workers=max(1, config.workers // 2))
        with ThreadPoolExecutor(max_workers=2) as executor:
            futures = [executor.submit(search, bound, side_config) for bound in sides]
            found = {bound: fut.result() for bound, fut in zip(sides, futures)}
    else:
        found = {bound: search(bound, config) for bound in sides}
    lower = found.get(low, at_edge)
    upper = found.get(high, at_edge)

    interval.set_lower_result(lower.value, lower.likelihood, lower.bounded)
    interval.set_upper_result(upper.value, upper.likelihood, upper.bounded)
    logger.info("%s interval: %s", parameter, interval)
    return interval


def omega_confidence_interval(
    oracle: LikelihoodOracle,
    estimate: ParameterSet,
    config: SearchConfig,
    *,
    omega_range: Tuple[float, float] = (1e-3, 100.0),
    increments: int = 20,
    threshold: float,
) -> ConfidenceInterval:
    return confidence_interval(
        oracle,
        estimate,
        config,
        parameter="omega",
        search_range=omega_range,
        increments=increments,
        threshold=threshold,
    )


def sigma_confidence_interval(
    oracle: LikelihoodOracle,
    estimate: ParameterSet,
    config: SearchConfig,
    *,
    sigma_range: Tuple[float, float] = (1e-3, 100.0),
    increments: int = 20,
    threshold: float,
) -> ConfidenceInterval:
    return confidence_interval(
        oracle,
        estimate,
        config,
        parameter="sigma",
        search_range=sigma_range,
        increments=increments,
        threshold=threshold,
    )
