"""Coupling scores: zero-sum gauge, Frobenius norms and APC correction."""

from __future__ import annotations

from typing import List, Optional, Tuple

import numpy as np

from .parameters import num_site_pairs

__all__ = [
    "zero_sum_gauge",
    "frobenius_norms",
    "pair_scores_matrix",
    "apc_correct",
    "sorted_pair_scores",
]


def zero_sum_gauge(J: np.ndarray) -> np.ndarray:
    """Shift every Q x Q coupling block so its rows and columns sum to zero."""
    assert J.ndim == 3 and J.shape[1] == J.shape[2], "couplings must have shape (P, Q, Q)"
    row_mean = J.mean(axis=2, keepdims=True)
    col_mean = J.mean(axis=1, keepdims=True)
    mean = J.mean(axis=(1, 2), keepdims=True)
    return J - row_mean - col_mean + mean


def frobenius_norms(J: np.ndarray, gap_state: Optional[int] = None) -> np.ndarray:
    """Frobenius norm of each gauge-fixed coupling block.

    When ``gap_state`` is given, that row and column are left out of the norm.
    """
    J = zero_sum_gauge(J)
    if gap_state is not None:
        keep = np.ones(J.shape[1], dtype=bool)
        keep[gap_state] = False
        J = J[:, keep][:, :, keep]
    return np.sqrt(np.sum(J * J, axis=(1, 2)))


def pair_scores_matrix(scores: np.ndarray, seqs_len: int) -> np.ndarray:
    """Symmetric (L, L) matrix from per-pair scores; zero diagonal."""
    assert scores.shape == (num_site_pairs(seqs_len),), "one score per site pair"
    mat = np.zeros((seqs_len, seqs_len), dtype=float)
    iu, ju = np.triu_indices(seqs_len, k=1)
    mat[iu, ju] = scores
    mat[ju, iu] = scores
    return mat


def apc_correct(mat: np.ndarray) -> np.ndarray:
    """Average product correction: S_ij - S_i. * S_.j / S_.."""
    seqs_len = mat.shape[0]
    assert mat.shape == (seqs_len, seqs_len), "score matrix must be square"
    assert seqs_len >= 2, "need at least two sites"
    # means over off-diagonal entries
    row_mean = mat.sum(axis=1) / (seqs_len - 1)
    total_mean = mat.sum() / (seqs_len * (seqs_len - 1))
    if total_mean == 0.0:
        corrected = mat.copy()
    else:
        corrected = mat - np.outer(row_mean, row_mean) / total_mean
    np.fill_diagonal(corrected, 0.0)
    return corrected


def sorted_pair_scores(
    J: np.ndarray,
    seqs_len: int,
    gap_state: Optional[int] = None,
    apc: bool = True,
) -> List[Tuple[int, int, float]]:
    """Site pairs (i, j), i < j, ranked by (APC-corrected) Frobenius norm, highest first."""
    mat = pair_scores_matrix(frobenius_norms(J, gap_state=gap_state), seqs_len)
    if apc:
        mat = apc_correct(mat)
    iu, ju = np.triu_indices(seqs_len, k=1)
    ranked = sorted(zip(iu.tolist(), ju.tolist(), mat[iu, ju].tolist()), key=lambda t: t[2], reverse=True)
    return [(int(i), int(j), float(s)) for i, j, s in ranked]
