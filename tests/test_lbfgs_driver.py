from __future__ import annotations

from typing import List, Tuple

import numpy as np
import pytest

from plmdca.interfaces import LbfgsCallbacks
from plmdca.lbfgs import LbfgsParameters, LbfgsStatus, lbfgs


class _Quadratic:
    """f(x) = sum_k c_k (x_k - t_k)^2 with call bookkeeping."""

    def __init__(self, n: int = 5, fail_after: int | None = None, cancel_at: int | None = None) -> None:
        self.target = np.linspace(-1.0, 2.0, n)
        self.scale = np.linspace(1.0, 3.0, n)
        self.fail_after = fail_after
        self.cancel_at = cancel_at
        self.events: List[Tuple[str, int]] = []
        self.trace: List[float] = []
        self.evaluations = 0
        self.offset = 0.0

    def evaluate(self, x: np.ndarray, g: np.ndarray, step: float) -> float:
        self.evaluations += 1
        self.events.append(("evaluate", self.evaluations))
        if self.fail_after is not None and self.evaluations > self.fail_after:
            return float("nan")
        d = x - self.target
        g[:] = 2.0 * self.scale * d
        return float(np.sum(self.scale * d * d)) + self.offset

    def progress(self, x, g, fx, xnorm, gnorm, step, k, ls) -> int:
        self.events.append(("progress", k))
        self.trace.append(fx)
        assert abs(xnorm - np.linalg.norm(x)) < 1e-12
        assert abs(gnorm - np.linalg.norm(g)) < 1e-12
        assert ls >= 1
        if self.cancel_at is not None and k >= self.cancel_at:
            return 1
        return 0


def test_quadratic_callbacks_satisfy_protocol():
    assert isinstance(_Quadratic(), LbfgsCallbacks)


def test_converges_on_quadratic():
    fun = _Quadratic()
    x = np.zeros(5)
    res = lbfgs(x, fun, LbfgsParameters(epsilon=1e-6, max_iterations=100))
    assert res.status is LbfgsStatus.SUCCESS
    np.testing.assert_allclose(x, fun.target, atol=1e-3)
    assert res.fx < 1e-5
    # objective never increases across accepted iterates
    assert all(b <= a + 1e-12 for a, b in zip(fun.trace, fun.trace[1:]))


def test_progress_follows_its_evaluation():
    fun = _Quadratic()
    lbfgs(np.zeros(5), fun, LbfgsParameters(max_iterations=20))
    kinds = [kind for kind, _ in fun.events]
    assert kinds[0] == "evaluate"
    for idx, kind in enumerate(kinds):
        if kind == "progress":
            assert kinds[idx - 1] == "evaluate"
    iterations = [k for kind, k in fun.events if kind == "progress"]
    assert iterations == list(range(1, len(iterations) + 1))


def test_zero_iterations_only_evaluates_start_point():
    fun = _Quadratic()
    x = np.full(5, 0.25)
    res = lbfgs(x, fun, LbfgsParameters(max_iterations=0))
    assert res.status is LbfgsStatus.MAXIMUM_ITERATION
    assert res.iterations == 0
    assert fun.evaluations == 1
    np.testing.assert_array_equal(x, np.full(5, 0.25))


def test_start_at_minimum_is_already_minimized():
    fun = _Quadratic()
    x = fun.target.copy()
    res = lbfgs(x, fun, LbfgsParameters(max_iterations=10))
    assert res.status is LbfgsStatus.ALREADY_MINIMIZED
    assert res.fx == 0.0


def test_iteration_cap_is_reported():
    fun = _Quadratic(n=20)
    fun.scale = np.logspace(0, 4, 20)
    res = lbfgs(np.zeros(20), fun, LbfgsParameters(epsilon=1e-12, max_iterations=2))
    assert res.status is LbfgsStatus.MAXIMUM_ITERATION
    assert res.iterations == 2


def test_failed_evaluation_stops_with_last_accepted_iterate():
    fun = _Quadratic(fail_after=3)
    x = np.zeros(5)
    res = lbfgs(x, fun, LbfgsParameters(epsilon=1e-12, max_iterations=50))
    assert res.status is LbfgsStatus.EVALUATION_FAILURE
    assert not res.status.is_success
    assert np.all(np.isfinite(x))
    assert np.isfinite(res.fx)


def test_failed_first_evaluation():
    fun = _Quadratic(fail_after=0)
    x = np.ones(5)
    res = lbfgs(x, fun, LbfgsParameters(max_iterations=5))
    assert res.status is LbfgsStatus.EVALUATION_FAILURE
    np.testing.assert_array_equal(x, np.ones(5))


def test_progress_can_cancel():
    fun = _Quadratic(n=20, cancel_at=1)
    fun.scale = np.logspace(0, 4, 20)
    res = lbfgs(np.zeros(20), fun, LbfgsParameters(epsilon=1e-12, max_iterations=50))
    assert res.status is LbfgsStatus.CANCELED
    assert res.iterations == 1


@pytest.mark.parametrize("kwargs", [{"m": 0}, {"max_linesearch": 0}, {"max_iterations": -1}, {"epsilon": -1.0}, {"past": -1}, {"delta": -1.0}])
def test_invalid_parameters(kwargs):
    with pytest.raises(AssertionError):
        LbfgsParameters(**kwargs)


def test_function_value_test_is_off_by_default():
    # the constant keeps every relative decrease below 2%
    fun = _Quadratic()
    fun.offset = 1e3
    res = lbfgs(np.zeros(5), fun, LbfgsParameters(epsilon=1e-4, max_iterations=100))
    assert res.status is LbfgsStatus.SUCCESS
    assert res.iterations > 1


def test_stalled_decrease_stops_when_past_is_set():
    fun = _Quadratic()
    fun.offset = 1e3
    res = lbfgs(np.zeros(5), fun, LbfgsParameters(epsilon=1e-12, max_iterations=100, past=1, delta=0.05))
    assert res.status is LbfgsStatus.STOP
    assert res.status.is_success
    assert res.iterations == 1
