"""Likelihood maximization over (omega, sigma, npop) with the simplex optimizer."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
import logging
import math
import threading
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

import numpy as np

from .config import SearchConfig
from .oracle import LikelihoodOracle
from .parameters import ParameterSet
from .simplex import SimplexResult, nelder_mead

logger = logging.getLogger(__name__)

RATES = ("omega", "sigma")
_MAX_LOG_RATE = 700.0

T = TypeVar("T")


@dataclass(frozen=True)
class OptimizationResult:
    params: ParameterSet
    converged: bool
    aborted: bool
    n_evaluations: int

    @property
    def likelihood(self) -> float:
        return self.params.likelihood


def log_rate_step(rate: float) -> float:
    """Initial simplex step for a log-scaled rate."""
    value = math.log(rate)
    if -0.3 < value < 0.3:
        return 0.15
    return value / 2.0


def npop_step(npop: float) -> float:
    return max(float(npop), 1.0) / 2.0


def clamp_parameters(config: SearchConfig, *, omega: float, sigma: float, npop: float) -> ParameterSet:
    """Map a raw simplex point into the domain accepted by the oracle."""
    npop_int = int(math.floor(float(npop) + 0.5))
    npop_int = min(max(npop_int, 1), int(config.nu))
    return ParameterSet(
        omega=max(float(omega), config.min_rate),
        sigma=max(float(sigma), config.min_rate),
        npop=npop_int,
        likelihood=0.0,
    )


def _exp(x: float) -> float:
    return math.exp(min(float(x), _MAX_LOG_RATE))


def _minimize(
    oracle: LikelihoodOracle,
    config: SearchConfig,
    decode: Callable[[np.ndarray], ParameterSet],
    x0: Sequence[float],
    step: Sequence[float],
    should_stop: Optional[Callable[[], bool]],
) -> OptimizationResult:
    def objective(x: np.ndarray) -> float:
        return -float(oracle.evaluate(decode(x)))

    res: SimplexResult = nelder_mead(
        objective,
        x0,
        step,
        max_evaluations=config.max_evaluations,
        stop_tolerance=config.stop_tolerance,
        should_stop=should_stop,
    )
    likelihood = -res.fun if math.isfinite(res.fun) else 0.0
    best = decode(res.x).with_likelihood(likelihood)
    return OptimizationResult(
        params=best,
        converged=res.converged,
        aborted=res.aborted,
        n_evaluations=res.n_evaluations,
    )


def optimize_profile(
    oracle: LikelihoodOracle,
    start: ParameterSet,
    config: SearchConfig,
    *,
    fixed: str = "omega",
    value: float | None = None,
    should_stop: Optional[Callable[[], bool]] = None,
) -> OptimizationResult:
    """Maximize the likelihood with one rate held fixed.

    The free rate is searched on a log scale together with npop, starting
    from `start`. `value` overrides the fixed rate taken from `start`.
    """
    if fixed not in RATES:
        raise ValueError("fixed must be one of {'omega', 'sigma'}")
    free = "sigma" if fixed == "omega" else "omega"
    fixed_value = start.value(fixed) if value is None else float(value)
    if fixed_value <= 0.0:
        raise ValueError(f"{fixed} must be > 0")
    free_start = max(start.value(free), config.min_rate)

    def decode(x: np.ndarray) -> ParameterSet:
        rates = {fixed: fixed_value, free: _exp(x[0])}
        return clamp_parameters(config, npop=x[1], **rates)

    return _minimize(
        oracle,
        config,
        decode,
        [math.log(free_start), float(start.npop)],
        [log_rate_step(free_start), npop_step(start.npop)],
        should_stop,
    )


def hillclimb(
    oracle: LikelihoodOracle,
    start: ParameterSet,
    config: SearchConfig,
    *,
    should_stop: Optional[Callable[[], bool]] = None,
) -> OptimizationResult:
    """Maximize the likelihood over log omega, log sigma and npop jointly."""
    omega = max(start.omega, config.min_rate)
    sigma = max(start.sigma, config.min_rate)

    def decode(x: np.ndarray) -> ParameterSet:
        return clamp_parameters(config, omega=_exp(x[0]), sigma=_exp(x[1]), npop=x[2])

    return _minimize(
        oracle,
        config,
        decode,
        [math.log(omega), math.log(sigma), float(start.npop)],
        [log_rate_step(omega), log_rate_step(sigma), npop_step(start.npop)],
        should_stop,
    )


def log_grid(start: float, stop: float, increments: int) -> np.ndarray:
    """Log-spaced values from `start` toward `stop`, kept just inside the range."""
    if start <= 0.0 or stop <= 0.0:
        raise ValueError("grid endpoints must be > 0")
    if increments < 0:
        raise ValueError("increments must be >= 0")
    if increments == 0:
        return np.array([float(start)])
    span = math.log(stop) - math.log(start)
    idx = np.arange(increments + 1, dtype=float)
    return np.exp(math.log(start) + idx * (span / increments) * 0.999)


def scan_grid(
    values: Sequence[float],
    fit: Callable[[float, Optional[Callable[[], bool]]], T],
    *,
    workers: int = 1,
    stop: Optional[Callable[[T], bool]] = None,
) -> List[Tuple[float, T]]:
    """Run `fit` for every grid value and collect results in grid order.

    Collection ends with the first result for which `stop` is true. With
    several workers the fits run concurrently; once the scan stops, queued
    fits are cancelled and running ones are asked to stop through the
    callback passed as their second argument.
    """
    if workers < 1:
        raise ValueError("workers must be >= 1")
    results: List[Tuple[float, T]] = []
    if workers == 1:
        for v in values:
            r = fit(float(v), None)
            results.append((float(v), r))
            if stop is not None and stop(r):
                break
        return results

    cancel = threading.Event()
    executor = ThreadPoolExecutor(max_workers=workers)
    try:
        futures = [executor.submit(fit, float(v), cancel.is_set) for v in values]
        for v, fut in zip(values, futures):
            r = fut.result()
            results.append((float(v), r))
            if stop is not None and stop(r):
                logger.debug("grid scan stopped at %.6g", float(v))
                break
    finally:
        cancel.set()
        executor.shutdown(wait=True, cancel_futures=True)
    return results


def omega_scan(
    oracle: LikelihoodOracle,
    start: ParameterSet,
    config: SearchConfig,
    *,
    omega_range: Tuple[float, float],
    increments: int,
    threshold: float | None = None,
) -> List[OptimizationResult]:
    """Optimize sigma and npop along a log-spaced grid of omega values.

    With a `threshold`, the scan stops after the first omega whose best
    likelihood falls below it.
    """
    low, high = float(omega_range[0]), float(omega_range[1])
    if not 0.0 < low < high:
        raise ValueError("omega_range must satisfy 0 < low < high")
    values = log_grid(low, high, increments)

    def fit(omega: float, should_stop: Optional[Callable[[], bool]]) -> OptimizationResult:
        return optimize_profile(oracle, start, config, fixed="omega", value=omega, should_stop=should_stop)

    stop = None if threshold is None else (lambda r: r.likelihood < threshold)
    trials = scan_grid(values, fit, workers=config.workers, stop=stop)
    for omega, r in trials:
        logger.info("omega=%.6g sigma=%.6g npop=%d likelihood=%.6g", omega, r.params.sigma, r.params.npop, r.likelihood)
    return [r for _, r in trials]


def best_result(results: Sequence[OptimizationResult]) -> OptimizationResult:
    if not results:
        raise ValueError("no optimization results to choose from")
    return max(results, key=lambda r: r.likelihood)
