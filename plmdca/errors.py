"""Exception types raised by the plmDCA engine and its boundary functions."""

from __future__ import annotations

__all__ = [
    "PlmDCAError",
    "ConfigurationError",
    "AllocationError",
    "EngineError",
]


class PlmDCAError(Exception):
    """Base class for plmDCA errors."""


class ConfigurationError(PlmDCAError, ValueError):
    """Run configuration rejected before any computation starts.

    Raised for an invalid thread count (including more than one thread on an
    interpreter without thread support) and for out-of-range run inputs.
    """


class AllocationError(PlmDCAError, MemoryError):
    """The fields-and-couplings buffer could not be allocated."""


class EngineError(PlmDCAError, ArithmeticError):
    """The gradient engine produced a non-finite objective or gradient."""
