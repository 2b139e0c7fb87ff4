from __future__ import annotations


class InvalidConfigurationError(ValueError):
    """Raised when schedule parameters violate one of their invariants."""


class InvalidQueryError(ValueError):
    """Raised when an engine or a result is queried with an out-of-domain argument."""


class ConvergenceError(RuntimeError):
    """Raised when a computation does not exhaust the probability mass within its iteration cap."""
