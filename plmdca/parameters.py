"""Layout of the flat fields-and-couplings vector.

The vector holds the L*Q site fields first, followed by one Q*Q coupling
block per unordered site pair (i, j), i < j, enumerated row-major:
(0, 1), (0, 2), ..., (0, L-1), (1, 2), ...
"""

from __future__ import annotations

from typing import Tuple

import numpy as np

__all__ = [
    "num_fields_and_couplings",
    "num_site_pairs",
    "pair_index",
    "pairs_starting_at",
    "pairs_ending_at",
    "field_offset",
    "coupling_offset",
    "split_fields_and_couplings",
]


def num_site_pairs(seqs_len: int) -> int:
    return seqs_len * (seqs_len - 1) // 2


def num_fields_and_couplings(seqs_len: int, num_site_states: int) -> int:
    """N = L*Q + L*(L-1)/2 * Q^2."""
    assert seqs_len >= 1, "seqs_len must be positive"
    assert num_site_states >= 1, "num_site_states must be positive"
    q = num_site_states
    return seqs_len * q + num_site_pairs(seqs_len) * q * q


def pair_index(i: int, j: int, seqs_len: int) -> int:
    """Row-major index of the unordered site pair (i, j), i < j."""
    assert 0 <= i < j < seqs_len, "pair must satisfy 0 <= i < j < seqs_len"
    return i * (2 * seqs_len - i - 1) // 2 + (j - i - 1)


def pairs_starting_at(i: int, seqs_len: int) -> slice:
    """Pairs (i, j), j > i, as a contiguous slice in pair order."""
    assert 0 <= i < seqs_len, "site out of range"
    start = i * (2 * seqs_len - i - 1) // 2
    return slice(start, start + seqs_len - i - 1)


def pairs_ending_at(j: int, seqs_len: int) -> np.ndarray:
    """Indices of the pairs (i, j), i < j, ordered by i."""
    assert 0 <= j < seqs_len, "site out of range"
    i = np.arange(j)
    return i * (2 * seqs_len - i - 1) // 2 + (j - i - 1)


def field_offset(i: int, a: int, num_site_states: int) -> int:
    return i * num_site_states + a


def coupling_offset(i: int, j: int, a: int, b: int, seqs_len: int, num_site_states: int) -> int:
    """Position of J_ij(a, b) in the flat vector."""
    q = num_site_states
    start = seqs_len * q + pair_index(i, j, seqs_len) * q * q
    return start + a * q + b


def split_fields_and_couplings(
    x: np.ndarray, seqs_len: int, num_site_states: int
) -> Tuple[np.ndarray, np.ndarray]:
    """Return views (h of shape (L, Q), J of shape (P, Q, Q)) into x."""
    q = num_site_states
    assert x.ndim == 1, "fields and couplings must be a flat vector"
    assert x.shape[0] == num_fields_and_couplings(seqs_len, q), "vector length does not match L and Q"
    num_fields = seqs_len * q
    h = x[:num_fields].reshape(seqs_len, q)
    J = x[num_fields:].reshape(num_site_pairs(seqs_len), q, q)
    return h, J
