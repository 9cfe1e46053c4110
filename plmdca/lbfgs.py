"""L-BFGS driver with a callback protocol in the style of liblbfgs.

The iteration itself is delegated to SciPy's L-BFGS-B. This module adapts it
to the evaluate/progress callback pair used by the objective function and
maps SciPy's outcomes onto ``LbfgsStatus`` codes:

- the initial point is evaluated once before iterating; a point that already
  passes the gradient test returns ALREADY_MINIMIZED, and ``max_iterations == 0``
  returns MAXIMUM_ITERATION without moving,
- after every iteration the gradient test ``||g|| / max(1, ||x||) < epsilon``
  is applied (SUCCESS),
- with ``past > 0``, the relative decrease of the objective over the last
  ``past`` iterations is compared with ``delta`` (STOP); it is off by default,
- a non-finite objective from ``evaluate`` aborts the run (EVALUATION_FAILURE),
- a non-zero return from ``progress`` cancels the run (CANCELED).
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from enum import IntEnum
from typing import Deque, Optional, Tuple

import numpy as np
from scipy.optimize import minimize

from .interfaces import LbfgsCallbacks

__all__ = [
    "LbfgsStatus",
    "LbfgsParameters",
    "LbfgsResult",
    "lbfgs",
]

logger = logging.getLogger(__name__)


class LbfgsStatus(IntEnum):
    SUCCESS = 0
    STOP = 1
    ALREADY_MINIMIZED = 2
    UNKNOWN_ERROR = -1024
    OUT_OF_MEMORY = -1023
    CANCELED = -1022
    EVALUATION_FAILURE = -1000
    LINESEARCH_FAILURE = -998
    MAXIMUM_ITERATION = -997

    @property
    def is_success(self) -> bool:
        return self.value >= 0


@dataclass(frozen=True)
class LbfgsParameters:
    """Driver settings. ``max_iterations == 0`` evaluates the start point only."""

    m: int = 6
    epsilon: float = 1e-5
    max_iterations: int = 0
    max_linesearch: int = 40
    past: int = 0
    delta: float = 1e-5

    def __post_init__(self) -> None:
        assert self.m > 0, "history size must be positive"
        assert self.epsilon >= 0.0, "epsilon must be non-negative"
        assert self.max_iterations >= 0, "max_iterations must be non-negative"
        assert self.max_linesearch > 0, "max_linesearch must be positive"
        assert self.past >= 0, "past must be non-negative"
        assert self.delta >= 0.0, "delta must be non-negative"


@dataclass(frozen=True)
class LbfgsResult:
    status: LbfgsStatus
    fx: float
    iterations: int
    evaluations: int


class _Abort(Exception):
    """Unwinds SciPy's loop after a failed evaluation."""


def _converged(xnorm: float, gnorm: float, epsilon: float) -> bool:
    return gnorm / max(1.0, xnorm) < epsilon


class _Session:
    """Bookkeeping for one ``lbfgs`` call: caches and counters around SciPy."""

    def __init__(self, n: int, callbacks: LbfgsCallbacks, params: LbfgsParameters) -> None:
        self.callbacks = callbacks
        self.params = params
        self.g = np.zeros(n, dtype=float)
        self.last_x: Optional[np.ndarray] = None
        self.last_fx = float("nan")
        self.accepted_x: Optional[np.ndarray] = None
        self.accepted_fx = float("nan")
        self.evaluations = 0
        self.evaluations_at_accept = 0
        self.iterations = 0
        self.status: Optional[LbfgsStatus] = None
        # accepted objective values, newest last; sized for the ``past`` test
        self.fx_history: Deque[float] = deque(maxlen=params.past + 1)

    def fun_and_grad(self, x: np.ndarray) -> Tuple[float, np.ndarray]:
        x = np.array(x, dtype=float)
        step = 0.0 if self.accepted_x is None else float(np.linalg.norm(x - self.accepted_x))
        fx = float(self.callbacks.evaluate(x, self.g, step))
        self.evaluations += 1
        if not np.isfinite(fx):
            self.status = LbfgsStatus.EVALUATION_FAILURE
            raise _Abort()
        self.last_x = x
        self.last_fx = fx
        return fx, self.g.copy()

    def accept(self) -> None:
        assert self.last_x is not None, "no evaluated point to accept"
        self.accepted_x = self.last_x.copy()
        self.accepted_fx = self.last_fx
        self.evaluations_at_accept = self.evaluations
        self.fx_history.append(self.accepted_fx)

    def on_iteration(self, intermediate_result) -> None:
        # SciPy evaluates the accepted iterate last, so the cached gradient belongs to it.
        previous = self.accepted_x
        ls = self.evaluations - self.evaluations_at_accept
        self.accept()
        self.iterations += 1
        x = self.accepted_x
        xnorm = float(np.linalg.norm(x))
        gnorm = float(np.linalg.norm(self.g))
        step = 0.0 if previous is None else float(np.linalg.norm(x - previous))
        ret = self.callbacks.progress(x.copy(), self.g.copy(), self.accepted_fx, xnorm, gnorm, step, self.iterations, ls)
        if ret:
            self.status = LbfgsStatus.CANCELED
            raise StopIteration
        if _converged(xnorm, gnorm, self.params.epsilon):
            self.status = LbfgsStatus.SUCCESS
            raise StopIteration
        if self._decrease_stalled():
            self.status = LbfgsStatus.STOP
            raise StopIteration

    def _decrease_stalled(self) -> bool:
        past = self.params.past
        if past == 0 or self.iterations < past or self.accepted_fx == 0.0:
            return False
        rate = (self.fx_history[0] - self.accepted_fx) / self.accepted_fx
        return abs(rate) < self.params.delta


def lbfgs(x: np.ndarray, callbacks: LbfgsCallbacks, params: Optional[LbfgsParameters] = None) -> LbfgsResult:
    """Minimize the objective exposed by ``callbacks`` starting from ``x``.

    ``x`` is updated in place with the final iterate. Whatever the status,
    it holds a valid point: the last accepted iterate.
    """
    params = params or LbfgsParameters()
    assert x.ndim == 1 and x.shape[0] > 0, "x must be a non-empty vector"
    session = _Session(x.shape[0], callbacks, params)

    try:
        session.fun_and_grad(x)
    except _Abort:
        return LbfgsResult(LbfgsStatus.EVALUATION_FAILURE, float("nan"), 0, session.evaluations)
    session.accept()
    xnorm = float(np.linalg.norm(x))
    gnorm = float(np.linalg.norm(session.g))
    if _converged(xnorm, gnorm, params.epsilon):
        return LbfgsResult(LbfgsStatus.ALREADY_MINIMIZED, session.accepted_fx, 0, session.evaluations)
    if params.max_iterations == 0:
        return LbfgsResult(LbfgsStatus.MAXIMUM_ITERATION, session.accepted_fx, 0, session.evaluations)

    first = (session.accepted_fx, session.g.copy())

    def fun(z: np.ndarray) -> Tuple[float, np.ndarray]:
        # SciPy re-evaluates the start point; reuse the value already computed.
        if session.evaluations == 1 and np.array_equal(z, session.accepted_x):
            return first[0], first[1].copy()
        return session.fun_and_grad(z)

    res = None
    try:
        res = minimize(
            fun,
            np.array(x, dtype=float),
            method="L-BFGS-B",
            jac=True,
            callback=session.on_iteration,
            options={
                "maxcor": params.m,
                "maxls": params.max_linesearch,
                "maxiter": params.max_iterations,
                "maxfun": max(15000, params.max_iterations * (params.max_linesearch + 1) + 1),
                "ftol": 0.0,
                "gtol": 0.0,
            },
        )
    except _Abort:
        logger.debug("L-BFGS aborted after %d evaluations", session.evaluations)

    x[:] = session.accepted_x
    status = session.status
    if status is None:
        status = _status_from_scipy(res)
    return LbfgsResult(status, session.accepted_fx, session.iterations, session.evaluations)


def _status_from_scipy(res) -> LbfgsStatus:
    if res is None:
        return LbfgsStatus.UNKNOWN_ERROR
    if res.status == 0:
        return LbfgsStatus.STOP
    if res.status == 1:
        return LbfgsStatus.MAXIMUM_ITERATION
    if res.status == 2:
        return LbfgsStatus.LINESEARCH_FAILURE
    return LbfgsStatus.UNKNOWN_ERROR
