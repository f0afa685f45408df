"""
objective.py
Poisson negative log-likelihood for a single row's factor vector.

For row i with observations {(j, x_ij)} against the fixed opposing factors F:

    f(v)  = Fsum · v + l2_reg ||v||^2 - sum_j x_ij log(F_j · v)
    ∇f(v) = Fsum + 2 l2_reg v - sum_j (x_ij / F_j · v) F_j

Fsum is the column sum of F (plus the L1 penalty when one is used), i.e. the
expected-count term summed over every entry of the row, observed or not.

Every dot product F_j · v is floored at ``dot_eps`` before the log and the
division, so a row that collapses onto zero gives a large but finite value.
"""

from __future__ import annotations

import numpy as np

from config.settings import settings
from .vector_ops import daxpy, ddot

DOT_EPS = settings.POISMF_DOT_EPS


def _row_dots(F: np.ndarray, indices: np.ndarray, v: np.ndarray, dot_eps: float):
    Fr = F[indices]
    dots = Fr @ v
    np.maximum(dots, dot_eps, out=dots)
    return Fr, dots


def likelihood_ascent(
    out: np.ndarray,
    v: np.ndarray,
    F: np.ndarray,
    values: np.ndarray,
    indices: np.ndarray,
    dot_eps: float = DOT_EPS,
) -> np.ndarray:
    """out = sum_j (x_j / F_j · v) F_j  (ascent direction of the log term only)."""
    if values.shape[0] == 0:
        out[:] = 0.0
        return out
    Fr, dots = _row_dots(F, indices, v, dot_eps)
    out[:] = (values / dots) @ Fr
    return out


class RowObjective:
    """Value / gradient callbacks for one row, handed to the CG minimizer."""

    def __init__(self, F, Fsum, values, indices, l2_reg: float, dot_eps: float = DOT_EPS):
        self.F = F
        self.Fsum = Fsum
        self.values = values
        self.indices = indices
        self.l2_reg = l2_reg
        self.dot_eps = dot_eps

    def value(self, v: np.ndarray) -> float:
        out = ddot(self.Fsum, v) + self.l2_reg * ddot(v, v)
        if self.values.shape[0]:
            _, dots = _row_dots(self.F, self.indices, v, self.dot_eps)
            out -= float(np.dot(self.values, np.log(dots)))
        return out

    def gradient(self, v: np.ndarray, out: np.ndarray) -> np.ndarray:
        out[:] = self.Fsum
        daxpy(2.0 * self.l2_reg, v, out)
        if self.values.shape[0]:
            Fr, dots = _row_dots(self.F, self.indices, v, self.dot_eps)
            out -= (self.values / dots) @ Fr
        return out


def full_objective(A, B, Xr, l2_reg: float = 0.0, l1_reg: float = 0.0, dot_eps: float = DOT_EPS) -> float:
    """
    Objective of the whole factorization, with A (dimA × k), B (dimB × k) and
    Xr the row-grouped view of X:

        sum(A) · sum(B) - sum_ij x_ij log(A_i · B_j)
            + l2_reg (||A||^2 + ||B||^2) + l1_reg (|A|_1 + |B|_1)
    """
    value = float(A.sum(axis=0) @ B.sum(axis=0))
    rows = np.repeat(np.arange(Xr.n_groups), np.diff(Xr.indptr))
    if rows.shape[0]:
        dots = np.einsum("ij,ij->i", A[rows], B[Xr.indices])
        value -= float(np.dot(Xr.data, np.log(np.maximum(dots, dot_eps))))
    value += l2_reg * (float(np.sum(A * A)) + float(np.sum(B * B)))
    value += l1_reg * (float(A.sum()) + float(B.sum()))
    return value


__all__ = ["DOT_EPS", "likelihood_ascent", "RowObjective", "full_objective"]
