"""
vector_ops.py
BLAS-style level-1 primitives over length-k float64 vectors.

These run on a single thread: the row sweeps in optimizer.py are already
parallel, so the primitives must not spawn work of their own.
"""

from __future__ import annotations

import numpy as np


def ddot(x: np.ndarray, y: np.ndarray) -> float:
    return float(np.dot(x, y))


def daxpy(a: float, x: np.ndarray, y: np.ndarray) -> np.ndarray:
    """y += a * x, in place."""
    if a == 1.0:
        y += x
    else:
        y += a * x
    return y


def dscal(a: float, x: np.ndarray) -> np.ndarray:
    """x *= a, in place."""
    x *= a
    return x


def clamp_nonneg(x: np.ndarray) -> np.ndarray:
    np.maximum(x, 0.0, out=x)
    return x


__all__ = ["ddot", "daxpy", "dscal", "clamp_nonneg"]
