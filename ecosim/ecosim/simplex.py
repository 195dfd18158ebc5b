"""Derivative-free Nelder–Mead minimization for noisy, expensive objectives."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Callable, Optional, Sequence

import numpy as np

from .errors import OracleUnavailableError

logger = logging.getLogger(__name__)

REFLECTION = 1.0
EXPANSION = 2.0
CONTRACTION = 0.5
SHRINK = 0.5


@dataclass(frozen=True)
class SimplexResult:
    x: np.ndarray
    fun: float
    n_evaluations: int
    converged: bool
    aborted: bool = False


class _BudgetExhausted(Exception):
    pass


class _Cancelled(Exception):
    pass


class _Evaluator:
    """Counts objective calls and remembers the best vertex seen so far."""

    def __init__(
        self,
        objective: Callable[[np.ndarray], float],
        max_evaluations: int,
        should_stop: Optional[Callable[[], bool]],
    ) -> None:
        self.objective = objective
        self.max_evaluations = int(max_evaluations)
        self.should_stop = should_stop
        self.n_evaluations = 0
        self.best_x: np.ndarray | None = None
        self.best_f = float("inf")

    def __call__(self, x: np.ndarray) -> float:
        if self.should_stop is not None and self.should_stop():
            raise _Cancelled()
        if self.n_evaluations >= self.max_evaluations:
            raise _BudgetExhausted()
        self.n_evaluations += 1
        f = float(self.objective(np.array(x, dtype=float)))
        if self.best_x is None or f < self.best_f:
            self.best_x = np.array(x, dtype=float)
            self.best_f = f
        return f

    def result(self, x0: np.ndarray, *, converged: bool, aborted: bool = False) -> SimplexResult:
        x = self.best_x if self.best_x is not None else np.array(x0, dtype=float)
        return SimplexResult(
            x=x,
            fun=self.best_f,
            n_evaluations=self.n_evaluations,
            converged=converged,
            aborted=aborted,
        )


def nelder_mead(
    objective: Callable[[np.ndarray], float],
    x0: Sequence[float],
    step: Sequence[float],
    *,
    max_evaluations: int = 100,
    stop_tolerance: float = 0.1,
    should_stop: Optional[Callable[[], bool]] = None,
) -> SimplexResult:
    """Minimize `objective` starting from the simplex spanned by `x0` and `step`.

    The search stops once the standard deviation of the objective over the
    simplex vertices falls below `stop_tolerance`. Running out of
    evaluations returns the best vertex with ``converged=False``. The
    objective may be stochastic; values are never cached or assumed to
    repeat.

    An `OracleUnavailableError` from the objective, or `should_stop()`
    turning true, ends the search early with ``aborted=True``. The error
    propagates instead when nothing has been evaluated yet.
    """
    start = np.asarray(x0, dtype=float).ravel()
    steps = np.asarray(step, dtype=float).ravel()
    n = len(start)
    if n < 1:
        raise ValueError("x0 must have at least one dimension")
    if steps.shape != start.shape:
        raise ValueError("step must have the same length as x0")
    if np.any(steps == 0.0):
        raise ValueError("step sizes must be nonzero")
    if max_evaluations < 1:
        raise ValueError("max_evaluations must be >= 1")

    evaluate = _Evaluator(objective, max_evaluations, should_stop)
    try:
        converged = _run_simplex(evaluate, start, steps, float(stop_tolerance))
    except _BudgetExhausted:
        converged = False
    except _Cancelled:
        logger.debug("simplex cancelled after %d evaluations", evaluate.n_evaluations)
        return evaluate.result(start, converged=False, aborted=True)
    except OracleUnavailableError as exc:
        if evaluate.best_x is None:
            raise
        logger.warning("simplex aborted after %d evaluations: %s", evaluate.n_evaluations, exc)
        return evaluate.result(start, converged=False, aborted=True)

    if not converged:
        logger.warning("simplex did not converge within %d evaluations", max_evaluations)
    return evaluate.result(start, converged=converged)


def _run_simplex(evaluate: _Evaluator, start: np.ndarray, steps: np.ndarray, stop_tolerance: float) -> bool:
    n = len(start)
    simplex = np.tile(start, (n + 1, 1))
    for i in range(n):
        simplex[i + 1, i] += steps[i]
    fvals = np.array([evaluate(v) for v in simplex], dtype=float)

    while True:
        order = np.argsort(fvals, kind="stable")
        simplex = simplex[order]
        fvals = fvals[order]
        if float(np.std(fvals)) < stop_tolerance:
            return True

        centroid = simplex[:-1].mean(axis=0)
        worst = simplex[-1]
        xr = centroid + REFLECTION * (centroid - worst)
        fr = evaluate(xr)

        if fr < fvals[0]:
            xe = centroid + EXPANSION * (xr - centroid)
            fe = evaluate(xe)
            if fe < fr:
                simplex[-1], fvals[-1] = xe, fe
            else:
                simplex[-1], fvals[-1] = xr, fr
            continue
        if fr < fvals[-2]:
            simplex[-1], fvals[-1] = xr, fr
            continue

        if fr < fvals[-1]:
            xc = centroid + CONTRACTION * (xr - centroid)
        else:
            xc = centroid + CONTRACTION * (worst - centroid)
        fc = evaluate(xc)
        if fc < min(fr, fvals[-1]):
            simplex[-1], fvals[-1] = xc, fc
            continue

        for i in range(1, n + 1):
            simplex[i] = simplex[0] + SHRINK * (simplex[i] - simplex[0])
            fvals[i] = evaluate(simplex[i])
