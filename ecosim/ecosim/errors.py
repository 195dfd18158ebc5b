"""Error taxonomy shared across the package."""

from __future__ import annotations


class EcosimError(Exception):
    """Base class for package errors."""


class MalformedTreeError(EcosimError, ValueError):
    """Raised when Newick text cannot be turned into a usable tree."""


class DomainViolationError(EcosimError, ValueError):
    """Raised when a computation leaves its admissible domain."""


class OracleUnavailableError(EcosimError, RuntimeError):
    """Raised when the simulation oracle cannot be run or read."""
