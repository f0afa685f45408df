"""
solvers.py
Per-row update strategies for the alternating optimizer.

Both solvers update one row vector v of the matrix being optimized, in place,
against the fixed opposing factor matrix F and that row's non-zeros. The
optimizer picks one variant per run and calls it the same way for every row.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from .nonneg_cg import SCRATCH_ROWS, CGResult, NonNegCGMinimizer
from .objective import DOT_EPS, RowObjective, likelihood_ascent
from .vector_ops import clamp_nonneg, daxpy, dscal

LOGGER = logging.getLogger(__name__)


class RowSolver(ABC):
    """Common interface used by AlternatingOptimizer."""

    name = "base"

    @abstractmethod
    def scratch_width(self, k: int) -> int:
        """Entries of private scratch each worker needs."""

    def prepare_regularization(self, cnst_sum: np.ndarray) -> np.ndarray:
        """Turn column sums (+L1 shift) into the vector this solver consumes."""
        return cnst_sum

    def end_iteration(self) -> None:
        """Called once after both the A and the B sweep of an outer iteration."""

    @abstractmethod
    def update_row(
        self,
        v: np.ndarray,
        F: np.ndarray,
        values: np.ndarray,
        indices: np.ndarray,
        cnst_sum: np.ndarray,
        scratch: np.ndarray,
    ) -> None:
        ...


class ProximalGradientSolver(RowSolver):
    """
    ``npass`` proximal-gradient passes per row:

        v <- v + step * sum_j (x_j / F_j · v) F_j     likelihood ascent
        v <- v + cnst_sum                             cnst_sum = -step * (Fsum + l1)
        v <- v * 1 / (1 + 2 * l2_reg * step)          L2 proximal operator
        v <- max(v, 0)

    The step size is halved after every full outer iteration.
    """

    name = "pgd"

    def __init__(self, step_size: float, l2_reg: float, npass: int, dot_eps: float = DOT_EPS):
        self.l2_reg = l2_reg
        self.npass = npass
        self.dot_eps = dot_eps
        self.step_size = step_size

    @property
    def step_size(self) -> float:
        return self._step_size

    @step_size.setter
    def step_size(self, value: float) -> None:
        self._step_size = value
        self.cnst_div = 1.0 / (1.0 + 2.0 * self.l2_reg * value)

    def scratch_width(self, k: int) -> int:
        return k

    def prepare_regularization(self, cnst_sum: np.ndarray) -> np.ndarray:
        return dscal(-self.step_size, cnst_sum)

    def end_iteration(self) -> None:
        self.step_size = 0.5 * self.step_size

    def update_row(self, v, F, values, indices, cnst_sum, scratch) -> None:
        grad = scratch[: v.shape[0]]
        for _ in range(self.npass):
            likelihood_ascent(grad, v, F, values, indices, self.dot_eps)
            daxpy(self.step_size, grad, v)
            daxpy(1.0, cnst_sum, v)
            dscal(self.cnst_div, v)
            clamp_nonneg(v)


class ConjugateGradientSolver(RowSolver):
    """
    Minimizes RowObjective for each row with an injected non-negative CG
    minimizer, ``npass`` being its function-evaluation budget.
    """

    name = "cg"

    def __init__(
        self,
        l2_reg: float,
        npass: int,
        tol: float = 1e-3,
        maxiter: int = 100,
        minimizer=None,
        dot_eps: float = DOT_EPS,
    ):
        self.l2_reg = l2_reg
        self.npass = npass
        self.tol = tol
        self.maxiter = maxiter
        self.minimizer = minimizer if minimizer is not None else NonNegCGMinimizer()
        self.dot_eps = dot_eps

    def scratch_width(self, k: int) -> int:
        return SCRATCH_ROWS * k

    def update_row(self, v, F, values, indices, cnst_sum, scratch) -> None:
        self.minimize_row(v, F, values, indices, cnst_sum, scratch, self.npass, self.maxiter, self.tol)

    def minimize_row(self, v, F, values, indices, Fsum, scratch, maxnfeval, maxiter, tol) -> CGResult:
        objective = RowObjective(F, Fsum, values, indices, self.l2_reg, self.dot_eps)
        result = self.minimizer.minimize(
            objective.value,
            objective.gradient,
            v,
            scratch,
            maxnfeval=maxnfeval,
            maxiter=maxiter,
            tol=tol,
        )
        # the minimizer should stay feasible; clear any drift below zero
        clamp_nonneg(v)
        return result


def optimize_single_row(
    v: np.ndarray,
    values: np.ndarray,
    indices: np.ndarray,
    F: np.ndarray,
    Fsum: np.ndarray,
    l2_reg: float,
    minimizer=None,
    scratch: Optional[np.ndarray] = None,
    dot_eps: float = DOT_EPS,
) -> CGResult:
    """
    Fit a single row (e.g. a user unseen at training time) against fixed
    factors, with a looser tolerance and a larger budget than the sweeps use.
    """
    solver = ConjugateGradientSolver(
        l2_reg, npass=200, tol=1e-1, maxiter=100, minimizer=minimizer, dot_eps=dot_eps
    )
    if scratch is None:
        scratch = np.zeros(solver.scratch_width(v.shape[0]), dtype=np.float64)
    return solver.minimize_row(
        v, F, values, indices, Fsum, scratch, solver.npass, solver.maxiter, solver.tol
    )


def make_row_solver(use_cg: bool, step_size: float, l2_reg: float, npass: int, dot_eps: float = DOT_EPS) -> RowSolver:
    if use_cg:
        return ConjugateGradientSolver(l2_reg, npass, dot_eps=dot_eps)
    return ProximalGradientSolver(step_size, l2_reg, npass, dot_eps=dot_eps)


__all__ = [
    "RowSolver",
    "ProximalGradientSolver",
    "ConjugateGradientSolver",
    "optimize_single_row",
    "make_row_solver",
]
