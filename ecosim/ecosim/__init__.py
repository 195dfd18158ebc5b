"""Ecotype simulation parameter estimation."""

__all__ = [
    "trees",
    "binning",
    "parameters",
    "config",
    "estimate",
    "oracle",
    "simplex",
    "hillclimb",
    "confidence",
    "errors",
    "cli",
]
