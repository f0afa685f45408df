"""
optimizer.py
Alternating block optimization for Poisson matrix factorization.

Each outer iteration:
  1. cnst_sum <- column sums of B (+ l1_reg), turned into the solver's form
  2. every row of A is updated independently, B fixed      (row-sparse X)
  3. cnst_sum <- column sums of the updated A (+ l1_reg)
  4. every row of B is updated independently, A fixed      (column-sparse X)
  5. the solver advances its schedule (PGD halves its step size)

There is no convergence check: ``numiter`` is the only stopping rule.
A and B are caller-owned and mutated in place.
"""

from __future__ import annotations

import logging
from enum import Enum
from time import time
from typing import Callable, Optional

import numpy as np
from threadpoolctl import threadpool_limits

from .objective import full_objective
from .params import Hyperparameters
from .parallel import sweep_rows
from .reduction import sum_by_cols
from .scratch import ResourceExhaustedError, ScratchArena
from .solvers import RowSolver, make_row_solver
from .views import FactorMatrix, SparseMatrixView

LOGGER = logging.getLogger(__name__)


class OptimizerState(str, Enum):
    IDLE = "idle"
    UPDATING_A = "updating_a"
    UPDATING_B = "updating_b"
    DONE = "done"


# called as callback(iteration, optimizer) after each outer iteration, iteration 0-based
IterationCallback = Callable[[int, "AlternatingOptimizer"], None]


class AlternatingOptimizer:
    def __init__(
        self,
        params: Hyperparameters,
        solver: Optional[RowSolver] = None,
        callback: Optional[IterationCallback] = None,
    ):
        self.params = params
        self._injected_solver = solver
        self.solver = self._make_solver()
        self.callback = callback
        self.state = OptimizerState.IDLE
        self.iterations_done = 0

    # ─────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────

    def _make_solver(self) -> RowSolver:
        if self._injected_solver is not None:
            return self._injected_solver
        p = self.params
        return make_row_solver(p.use_cg, p.step_size, p.l2_reg, p.npass, p.dot_eps)

    def _regularization_vector(self, out: np.ndarray, fixed: FactorMatrix, n_workers: int) -> np.ndarray:
        sum_by_cols(out, fixed.array, n_workers)
        if self.params.l1_reg > 0:
            out += self.params.l1_reg
        return self.solver.prepare_regularization(out)

    def _sweep(
        self,
        target: FactorMatrix,
        fixed: FactorMatrix,
        X: SparseMatrixView,
        cnst_sum: np.ndarray,
        arena: ScratchArena,
    ) -> None:
        F = fixed.array
        solver = self.solver

        def _task(row: int, scratch: np.ndarray) -> None:
            values, indices = X.row(row)
            solver.update_row(target.row(row), F, values, indices, cnst_sum, scratch)

        sweep_rows(target.dim, _task, arena)

    @staticmethod
    def _check_shapes(A: FactorMatrix, Xr: SparseMatrixView, B: FactorMatrix, Xc: SparseMatrixView) -> None:
        if A.k != B.k:
            raise ValueError(f"A and B must share k (got {A.k} and {B.k})")
        if Xr.n_groups != A.dim or Xr.n_opposite != B.dim:
            raise ValueError("Row-sparse view does not match dimensions of A and B")
        if Xc.n_groups != B.dim or Xc.n_opposite != A.dim:
            raise ValueError("Column-sparse view does not match dimensions of A and B")

    # ─────────────────────────────────────────────
    # Main loop
    # ─────────────────────────────────────────────

    def run(self, A: FactorMatrix, Xr: SparseMatrixView, B: FactorMatrix, Xc: SparseMatrixView) -> None:
        self._check_shapes(A, Xr, B, Xc)
        p = self.params
        # fresh solver so a repeated run restarts the step-size schedule
        self.solver = self._make_solver()
        self.iterations_done = 0
        n_workers = p.n_workers
        k = A.k

        LOGGER.info(
            "Poisson factorization: dimA=%d dimB=%d k=%d nnz=%d solver=%s numiter=%d npass=%d workers=%d",
            A.dim, B.dim, k, Xr.nnz, self.solver.name, p.numiter, p.npass, n_workers,
        )

        started = time()
        try:
            # row sweeps are the parallel level; BLAS calls inside them stay on one thread
            with threadpool_limits(limits=1, user_api="blas"):
                with ScratchArena(n_workers, self.solver.scratch_width(k), shared_width=k) as arena:
                    self._iterate(A, Xr, B, Xc, arena, n_workers)
        except ResourceExhaustedError as exc:
            LOGGER.error("Error: Could not allocate memory for the procedure. (%s)", exc)
            raise

        self.state = OptimizerState.DONE
        LOGGER.info("Finished %d iteration(s) in %.2fs", self.iterations_done, time() - started)

    def _iterate(self, A, Xr, B, Xc, arena: ScratchArena, n_workers: int) -> None:
        p = self.params
        cnst_sum = arena.shared

        for it in range(p.numiter):
            self._regularization_vector(cnst_sum, B, n_workers)
            self.state = OptimizerState.UPDATING_A
            self._sweep(A, B, Xr, cnst_sum, arena)

            # B sweep reads the A just written above
            self._regularization_vector(cnst_sum, A, n_workers)
            self.state = OptimizerState.UPDATING_B
            self._sweep(B, A, Xc, cnst_sum, arena)

            self.solver.end_iteration()
            self.iterations_done = it + 1

            if LOGGER.isEnabledFor(logging.DEBUG):
                if not (A.check_nonneg() and B.check_nonneg()):
                    LOGGER.warning("iter %d/%d: negative factor entries after sweep", it + 1, p.numiter)
                LOGGER.debug(
                    "iter %d/%d objective=%.6f",
                    it + 1, p.numiter,
                    full_objective(A.array, B.array, Xr, p.l2_reg, p.l1_reg, p.dot_eps),
                )
            if self.callback is not None:
                self.callback(it, self)


def run_poismf(
    A, Xrow, rowOffsets, rowIndices,
    B, Xcol, colOffsets, colIndices,
    dimA: int, dimB: int, k: int,
    l2_reg: float, l1_reg: float, use_cg: bool, step_size: float,
    numiter: int, npass: int, ncores: int,
) -> None:
    """
    Flat entry point over raw buffers.

    A (dimA × k) and B (dimB × k) are pre-initialized float64 buffers, flat or
    2-D, optimized in place. (Xrow, rowOffsets, rowIndices) and
    (Xcol, colOffsets, colIndices) are the row- and column-grouped compressed
    forms of the same count matrix. Returns None.
    """
    params = Hyperparameters(
        k=k,
        l2_reg=l2_reg,
        l1_reg=l1_reg,
        use_cg=bool(use_cg),
        step_size=step_size,
        numiter=numiter,
        npass=npass,
        ncores=ncores,
    )
    A_view = FactorMatrix.from_buffer(A, dimA, k)
    B_view = FactorMatrix.from_buffer(B, dimB, k)
    Xr = SparseMatrixView(Xrow, rowIndices, rowOffsets, dimA, dimB)
    Xc = SparseMatrixView(Xcol, colIndices, colOffsets, dimB, dimA)
    AlternatingOptimizer(params).run(A_view, Xr, B_view, Xc)


__all__ = ["OptimizerState", "AlternatingOptimizer", "run_poismf"]
