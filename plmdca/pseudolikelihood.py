"""Regularized negative log-pseudolikelihood of a Potts model over an MSA.

For site i of sequence n the conditional distribution is

    P_i(a | s) = exp(E_i(a)) / sum_b exp(E_i(b)),
    E_i(a)     = h_i(a) + sum_{j != i} J_ij(a, s_j)

and the objective is

    f = - sum_n w_n sum_i log P_i(s_i^n | s^n) + lambda_h ||h||^2 + lambda_J ||J||^2.

Each site contributes independently. Evaluation runs in two passes over the
sites on a worker pool: the conditionals (objective terms and residuals),
then the gradient, where site i writes h_i and the pair blocks (i, j), j > i.
No dense (L, L, Q, Q) coupling tensor is built.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from itertools import repeat
from typing import Callable, List, Optional, TypeVar

import numpy as np
from scipy.special import logsumexp

from .alignment import AlignmentModel
from .errors import EngineError
from .parameters import (
    num_fields_and_couplings,
    pairs_ending_at,
    pairs_starting_at,
    split_fields_and_couplings,
)

__all__ = ["PlmDCA"]

T = TypeVar("T")


@dataclass
class PlmDCA:
    """Pseudolikelihood gradient engine for protein and RNA alignments."""

    alignment: AlignmentModel
    lambda_h: float = 1.0
    lambda_J: float = 20.0
    num_threads: int = 1

    _executor: Optional[ThreadPoolExecutor] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        assert self.lambda_h >= 0.0 and self.lambda_J >= 0.0, "regularization must be non-negative"
        assert self.num_threads >= 1, "num_threads must be positive"
        assert self.alignment.seqs_len >= 2, "need at least two sites"

    @property
    def seqs_len(self) -> int:
        return self.alignment.seqs_len

    @property
    def num_site_states(self) -> int:
        return self.alignment.num_site_states

    @property
    def num_params(self) -> int:
        return num_fields_and_couplings(self.seqs_len, self.num_site_states)

    def initialize(self, x: np.ndarray) -> None:
        """Start from zero fields and couplings."""
        assert x.shape == (self.num_params,), "parameter buffer has the wrong length"
        x[:] = 0.0

    def regularization(self, x: np.ndarray) -> float:
        """lambda_h ||h||^2 + lambda_J ||J||^2."""
        h, J = split_fields_and_couplings(x, self.seqs_len, self.num_site_states)
        return float(self.lambda_h * np.vdot(h, h) + self.lambda_J * np.vdot(J, J))

    def evaluate(self, x: np.ndarray, g: np.ndarray) -> float:
        """Objective at x; the gradient is written into g.

        Raises:
            EngineError: if the objective or any gradient entry is not finite.
        """
        assert x.shape == (self.num_params,), "parameter vector has the wrong length"
        assert g.shape == x.shape, "gradient buffer must match the parameter vector"
        x = np.asarray(x, dtype=float)
        h, J = split_fields_and_couplings(x, self.seqs_len, self.num_site_states)
        g_h, g_J = split_fields_and_couplings(g, self.seqs_len, self.num_site_states)

        # weighted one-hot minus conditional probabilities, one (M, Q) slab per site
        residuals = np.empty_like(self.alignment.one_hot)
        site_f = self._map_sites(self._site_conditional, h, J, residuals)
        self._map_sites(self._site_gradient, h, J, residuals, g_h, g_J)

        fx = float(np.sum(site_f)) + self.regularization(x)
        if not np.isfinite(fx) or not np.all(np.isfinite(g)):
            raise EngineError(f"non-finite pseudolikelihood (fx = {fx})")
        return fx

    def close(self) -> None:
        """Shut down the worker pool, if one was started."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self) -> "PlmDCA":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _map_sites(self, fn: Callable[..., T], *args) -> List[T]:
        # Each call owns site i's slots, so the result does not depend on the thread count.
        sites = range(self.seqs_len)
        if self.num_threads == 1:
            return [fn(i, *args) for i in sites]
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.num_threads, thread_name_prefix="plmdca")
        return list(self._executor.map(fn, sites, *(repeat(a) for a in args)))

    def _site_conditional(self, i: int, h: np.ndarray, J: np.ndarray, residuals: np.ndarray) -> float:
        """Negative weighted log conditional likelihood of site i.

        Fills residuals[:, i, :] with w_n * (delta(s_i^n, a) - P_i(a | s^n)).
        """
        X = self.alignment.one_hot
        w = self.alignment.weights
        L = self.seqs_len

        # J_ij(a, b) for j > i, and J_ji(b, a) for j < i
        energies = h[i][None, :] + np.einsum("jab,njb->na", J[pairs_starting_at(i, L)], X[:, i + 1:])
        energies += np.einsum("jba,njb->na", J[pairs_ending_at(i, L)], X[:, :i])
        log_p = energies - logsumexp(energies, axis=1, keepdims=True)

        residuals[:, i, :] = w[:, None] * (X[:, i, :] - np.exp(log_p))
        observed = log_p[np.arange(log_p.shape[0]), self.alignment.states[:, i]]
        return -float(np.dot(w, observed))

    def _site_gradient(
        self,
        i: int,
        h: np.ndarray,
        J: np.ndarray,
        residuals: np.ndarray,
        g_h: np.ndarray,
        g_J: np.ndarray,
    ) -> None:
        """Write the gradient of h_i and of the pairs (i, j), j > i."""
        X = self.alignment.one_hot
        pairs = pairs_starting_at(i, self.seqs_len)
        g_h[i] = -residuals[:, i, :].sum(axis=0) + 2.0 * self.lambda_h * h[i]
        # J_ij enters the conditionals of both site i and site j
        from_i = np.einsum("na,njb->jab", residuals[:, i, :], X[:, i + 1:])
        from_j = np.einsum("na,njb->jab", X[:, i, :], residuals[:, i + 1:])
        g_J[pairs] = 2.0 * self.lambda_J * J[pairs] - from_i - from_j
