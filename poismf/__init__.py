"""Convenience exports for the Poisson factorization package."""

from .model import NotFittedError, PoisMF
from .nonneg_cg import CGResult, NonNegCGMinimizer
from .objective import RowObjective, full_objective
from .optimizer import AlternatingOptimizer, OptimizerState, run_poismf
from .params import Hyperparameters
from .reduction import sum_by_cols
from .scratch import ResourceExhaustedError, ScratchArena
from .solvers import ConjugateGradientSolver, ProximalGradientSolver, RowSolver
from .views import FactorMatrix, SparseMatrixView

__all__ = [
    "PoisMF",
    "NotFittedError",
    "run_poismf",
    "AlternatingOptimizer",
    "OptimizerState",
    "Hyperparameters",
    "RowSolver",
    "ProximalGradientSolver",
    "ConjugateGradientSolver",
    "NonNegCGMinimizer",
    "CGResult",
    "RowObjective",
    "full_objective",
    "sum_by_cols",
    "ScratchArena",
    "ResourceExhaustedError",
    "SparseMatrixView",
    "FactorMatrix",
]
