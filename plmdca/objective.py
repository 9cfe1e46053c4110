"""Objective function handed to the L-BFGS driver.

The objective owns the fields-and-couplings buffer and translates the
driver's evaluate/progress callbacks into calls on the gradient engine.
Neither callback raises into the driver: engine failures are turned into the
driver's non-finite sentinel and reported through the run status, and a
failing hook is logged and skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

import numpy as np

from .errors import AllocationError
from .interfaces import GradientEngine
from .lbfgs import LbfgsParameters, LbfgsResult, LbfgsStatus, lbfgs

__all__ = [
    "RunState",
    "ProgressRecord",
    "ObjectiveFunction",
    "default_lbfgs_parameters",
]

logger = logging.getLogger(__name__)


class RunState(Enum):
    UNINITIALIZED = "uninitialized"
    BUFFER_ALLOCATED = "buffer_allocated"
    INITIALIZED = "initialized"
    OPTIMIZING = "optimizing"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class ProgressRecord:
    """Diagnostics of one completed L-BFGS iteration."""

    iteration: int
    fx: float
    xnorm: float
    gnorm: float
    step: float
    linesearch: int


ProgressHook = Callable[[ProgressRecord], None]
TerminationHook = Callable[[LbfgsStatus, float], None]


def default_lbfgs_parameters(max_iterations: int) -> LbfgsParameters:
    return LbfgsParameters(
        m=5,
        epsilon=1e-3,
        max_iterations=max_iterations,
        max_linesearch=5,
    )


def _allocate(n: int) -> np.ndarray:
    try:
        return np.empty(n, dtype=float)
    except MemoryError as exc:
        raise AllocationError(f"Failed to allocate a memory block for {n} variables") from exc


@dataclass
class ObjectiveFunction:
    """Objective function for the L-BFGS driver.

    Usage:
        fun = ObjectiveFunction(engine, max_iterations=100, verbose=True)
        status = fun.run(engine.num_params)
        h_and_J = fun.get_fields_and_couplings()
    """

    engine: GradientEngine
    max_iterations: int
    verbose: bool = False
    lbfgs_params: Optional[LbfgsParameters] = None

    on_progress: List[ProgressHook] = field(default_factory=list)
    on_terminated: List[TerminationHook] = field(default_factory=list)

    state: RunState = field(default=RunState.UNINITIALIZED, init=False)
    status: Optional[LbfgsStatus] = field(default=None, init=False)
    fx: float = field(default=float("nan"), init=False)
    last_error: Optional[BaseException] = field(default=None, init=False, repr=False)
    _x: Optional[np.ndarray] = field(default=None, init=False, repr=False)

    def get_fields_and_couplings(self) -> Optional[np.ndarray]:
        """The parameter buffer, or None if it was never allocated."""
        return self._x

    def run(self, n: int) -> LbfgsStatus:
        """Perform the plmDCA computation using L-BFGS.

        Args:
            n: Total number of fields and couplings.
        Returns:
            Exit status of the L-BFGS optimization.
        """
        if self.state is not RunState.UNINITIALIZED:
            raise RuntimeError(f"objective function already ran (state: {self.state.value})")
        assert n == self.engine.num_params, "parameter count does not match the engine"
        try:
            x = _allocate(n)
        except AllocationError as exc:
            logger.error("%s", exc)
            self._finish(LbfgsStatus.OUT_OF_MEMORY, float("nan"))
            return LbfgsStatus.OUT_OF_MEMORY
        self._x = x
        self.state = RunState.BUFFER_ALLOCATED

        self.engine.initialize(x)
        self.state = RunState.INITIALIZED

        params = self.lbfgs_params or default_lbfgs_parameters(self.max_iterations)
        self.state = RunState.OPTIMIZING
        try:
            result: LbfgsResult = lbfgs(x, self, params)
        except Exception as exc:
            # x still holds a valid point: the driver only writes it back on exit
            self.last_error = exc
            logger.exception("L-BFGS driver failed")
            result = LbfgsResult(LbfgsStatus.UNKNOWN_ERROR, float("nan"), 0, 0)

        self._finish(result.status, result.fx)
        if self.verbose:
            logger.info("L-BFGS optimization terminated with status code = %d", int(result.status))
            logger.info("fx = %f", result.fx)
        return result.status

    def evaluate(self, x: np.ndarray, g: np.ndarray, step: float) -> float:
        """Value and gradient of the regularized negative log-pseudolikelihood.

        Args:
            x: Fields and couplings.
            g: Output buffer for the gradient.
            step: Length of the step that produced x (informational).
        Returns:
            The objective value, or NaN if the engine failed.
        """
        try:
            return float(self.engine.evaluate(x, g))
        except Exception as exc:
            self.last_error = exc
            logger.error("Gradient evaluation failed: %s", exc)
            return float("nan")

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
        record = ProgressRecord(
            iteration=int(k),
            fx=float(fx),
            xnorm=float(xnorm),
            gnorm=float(gnorm),
            step=float(step),
            linesearch=int(ls),
        )
        if self.verbose:
            logger.info("Iteration %d:", record.iteration)
            logger.info(
                "fx = %f xnorm = %f, gnorm = %f, step = %f",
                record.fx,
                record.xnorm,
                record.gnorm,
                record.step,
            )
        for hook in self.on_progress:
            _call_hook(hook, record)
        return 0

    def _finish(self, status: LbfgsStatus, fx: float) -> None:
        self.status = status
        self.fx = float(fx)
        self.state = RunState.TERMINATED
        for hook in self.on_terminated:
            _call_hook(hook, status, self.fx)


def _call_hook(hook: Callable[..., None], *args) -> None:
    try:
        hook(*args)
    except Exception:
        logger.exception("Hook %r failed", hook)
