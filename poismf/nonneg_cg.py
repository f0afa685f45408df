"""
nonneg_cg.py
Non-negative conjugate gradient minimizer, used as the inner solver strategy
for ConjugateGradientSolver.

Any object with the same ``minimize`` signature can be injected instead; the
row solvers and the optimizer only depend on that contract:

    minimize(fun, grad, x, scratch, maxnfeval, maxiter, tol) -> CGResult

``x`` is improved in place, stays in the non-negative orthant, and the
objective value never increases. ``scratch`` is a caller-owned (4, k) buffer
so that no memory is allocated per call.

``maxnfeval`` is checked only between iterations and inside later line
searches: the first line search always runs to completion, so even a budget
of 1 moves ``x`` whenever a descent direction exists.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

import numpy as np

from .vector_ops import clamp_nonneg, daxpy, ddot, dscal

LOGGER = logging.getLogger(__name__)

ObjectiveFn = Callable[[np.ndarray], float]
GradientFn = Callable[[np.ndarray, np.ndarray], np.ndarray]

SCRATCH_ROWS = 4


@dataclass
class CGResult:
    x: np.ndarray
    fun: float
    niter: int
    nfeval: int


def _project_direction(direction: np.ndarray, x: np.ndarray) -> None:
    # no movement past the boundary for coordinates already at zero
    direction[(x <= 0.0) & (direction < 0.0)] = 0.0


def _projected_grad_sqnorm(grad: np.ndarray, x: np.ndarray) -> float:
    free = (x > 0.0) | (grad < 0.0)
    g = grad[free]
    return ddot(g, g)


class NonNegCGMinimizer:
    """
    Projected Polak-Ribière (PR+) conjugate gradient with backtracking
    Armijo line search. Iterates are projected onto x >= 0 after every trial
    step, and the search direction is reset to the projected steepest descent
    whenever it stops being a descent direction.
    """

    def __init__(self, decr_lnsrch: float = 0.25, lnsrch_const: float = 0.01, max_ls: int = 20):
        self.decr_lnsrch = decr_lnsrch
        self.lnsrch_const = lnsrch_const
        self.max_ls = max_ls

    def minimize(
        self,
        fun: ObjectiveFn,
        grad: GradientFn,
        x: np.ndarray,
        scratch: np.ndarray,
        maxnfeval: int = 200,
        maxiter: int = 100,
        tol: float = 1e-3,
    ) -> CGResult:
        k = x.shape[0]
        work = scratch[: SCRATCH_ROWS * k].reshape(SCRATCH_ROWS, k)
        new_x, grad_prev, direction, grad_curr = work

        clamp_nonneg(x)
        f = fun(x)
        grad(x, grad_curr)
        nfeval = 1

        np.negative(grad_curr, out=direction)
        _project_direction(direction, x)

        niter = 0
        while niter < maxiter:
            if niter > 0 and nfeval >= maxnfeval:
                break
            if _projected_grad_sqnorm(grad_curr, x) <= tol:
                break

            gd = ddot(direction, grad_curr)
            if gd >= 0.0:
                np.negative(grad_curr, out=direction)
                _project_direction(direction, x)
                gd = ddot(direction, grad_curr)
                if gd >= 0.0:
                    break

            step = 1.0
            accepted = False
            for _ in range(self.max_ls):
                new_x[:] = x
                daxpy(step, direction, new_x)
                clamp_nonneg(new_x)
                new_f = fun(new_x)
                nfeval += 1
                if new_f <= f + self.lnsrch_const * step * gd:
                    accepted = True
                    break
                if niter > 0 and nfeval >= maxnfeval:
                    break
                step *= self.decr_lnsrch

            if not accepted:
                break

            x[:] = new_x
            f = new_f
            grad_prev[:] = grad_curr
            grad(x, grad_curr)
            niter += 1

            denom = ddot(grad_prev, grad_prev)
            beta = 0.0
            if denom > 0.0:
                beta = max(0.0, (ddot(grad_curr, grad_curr) - ddot(grad_curr, grad_prev)) / denom)
            dscal(beta, direction)
            daxpy(-1.0, grad_curr, direction)
            _project_direction(direction, x)

        return CGResult(x=x, fun=f, niter=niter, nfeval=nfeval)


__all__ = ["CGResult", "NonNegCGMinimizer", "SCRATCH_ROWS"]
