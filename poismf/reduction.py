"""
reduction.py
Column sums of a dense factor matrix, split over row ranges.
"""

from __future__ import annotations

import numpy as np

from .parallel import run_workers


def sum_by_cols(out: np.ndarray, M: np.ndarray, ncores: int = 1) -> np.ndarray:
    """
    out[j] = sum_i M[i, j], written into ``out`` (zeroed first).

    Rows are cut into min(ncores, nrow) contiguous ranges, each summed on its
    own thread, and the partial sums are added together in range order. The
    result is reproducible for a fixed ncores; different ncores may differ in
    the last bits.
    """
    out[:] = 0.0
    nrow = M.shape[0]
    if nrow == 0:
        return out

    n_chunks = max(1, min(ncores, nrow))
    bounds = [(c * nrow) // n_chunks for c in range(n_chunks + 1)]
    partials = np.zeros((n_chunks, M.shape[1]), dtype=np.float64)

    def _sum_chunk(chunk: int) -> None:
        lo, hi = bounds[chunk], bounds[chunk + 1]
        M[lo:hi].sum(axis=0, out=partials[chunk])

    run_workers(n_chunks, _sum_chunk)

    for chunk in range(n_chunks):
        out += partials[chunk]
    return out


__all__ = ["sum_by_cols"]
