"""Parameter estimates and confidence interval containers."""

from __future__ import annotations

from dataclasses import dataclass, replace


@dataclass(frozen=True)
class ParameterSet:
    omega: float
    sigma: float
    npop: int
    likelihood: float = 0.0

    def with_likelihood(self, likelihood: float) -> "ParameterSet":
        return replace(self, likelihood=float(likelihood))

    def value(self, name: str) -> float:
        if name not in ("omega", "sigma"):
            raise ValueError("name must be one of {'omega', 'sigma'}")
        return float(getattr(self, name))

    def __str__(self) -> str:
        return (
            f"omega={self.omega:.4g} sigma={self.sigma:.4g} "
            f"npop={self.npop} likelihood={self.likelihood:.4g}"
        )


@dataclass(frozen=True)
class ConfidenceBound:
    """One side of a confidence interval.

    `bounded` is False when the search ran out of range before the
    likelihood fell below the threshold; `value` is then the last value
    tried.
    """

    value: float
    likelihood: float
    bounded: bool = True


class ConfidenceInterval:
    """Lower and upper bounds of a profile-likelihood interval."""

    def __init__(self, parameter: str, lower: ConfidenceBound | None = None, upper: ConfidenceBound | None = None):
        self.parameter = parameter
        self.lower = lower
        self.upper = upper

    def set_lower_result(self, value: float, likelihood: float, bounded: bool = True) -> None:
        self.lower = ConfidenceBound(float(value), float(likelihood), bounded)

    def set_upper_result(self, value: float, likelihood: float, bounded: bool = True) -> None:
        self.upper = ConfidenceBound(float(value), float(likelihood), bounded)

    def is_complete(self) -> bool:
        return self.lower is not None and self.upper is not None

    def __str__(self) -> str:
        if not self.is_complete():
            return f"{self.parameter}: not computed"
        low = f"{self.lower.value:.4g}" if self.lower.bounded else f"<{self.lower.value:.4g}"
        high = f"{self.upper.value:.4g}" if self.upper.bounded else f">{self.upper.value:.4g}"
        return f"{low} to {high} ({self.lower.likelihood:.4g}, {self.upper.likelihood:.4g})"
