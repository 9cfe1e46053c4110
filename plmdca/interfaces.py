"""Interfaces between the L-BFGS driver, the objective adapter and the engine.

Exposes strict typed Protocols for the gradient engine and the callback
capability handed to the optimizer.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import numpy as np

__all__ = [
    "GradientEngine",
    "LbfgsCallbacks",
]


@runtime_checkable
class GradientEngine(Protocol):
    """Computes a regularized objective and its gradient over a flat parameter vector."""

    @property
    def num_params(self) -> int:
        """Length of the parameter and gradient vectors."""
        ...

    def initialize(self, x: np.ndarray) -> None:
        """Fill the caller-provided parameter vector with the initial guess."""
        ...

    def evaluate(self, x: np.ndarray, g: np.ndarray) -> float:
        """Return the objective at x and write its gradient into g."""
        ...


@runtime_checkable
class LbfgsCallbacks(Protocol):
    """The evaluable + observable capability consumed by the optimizer driver."""

    def evaluate(self, x: np.ndarray, g: np.ndarray, step: float) -> float:
        """Return the objective value at x and fill g with its gradient.

        A non-finite return value tells the driver the evaluation failed.
        """
        ...

    def progress(
        self,
        x: np.ndarray,
        g: np.ndarray,
        fx: float,
        xnorm: float,
        gnorm: float,
        step: float,
        k: int,
        ls: int,
    ) -> int:
        """Observe a completed iteration. A non-zero return cancels the run."""
        ...
