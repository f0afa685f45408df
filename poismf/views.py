"""
views.py
Thin views over the caller-owned buffers the optimizer works on.

  • SparseMatrixView: compressed (CSR or CSC) counts, read-only
  • FactorMatrix:     dense dim × k factors, mutated in place, never copied
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np


@dataclass
class SparseMatrixView:
    """
    One orientation of a sparse count matrix.

    For group i (a row of a CSR view, a column of a CSC view) the observations
    live in data[indptr[i]:indptr[i + 1]], with the opposite-axis positions in
    the same slice of ``indices``.
    """

    data: np.ndarray
    indices: np.ndarray
    indptr: np.ndarray
    n_groups: int
    n_opposite: int

    def __post_init__(self):
        # .view() so that freezing never touches the caller's own arrays
        self.data = np.ascontiguousarray(self.data, dtype=np.float64).view()
        self.indices = np.ascontiguousarray(self.indices, dtype=np.int64).view()
        self.indptr = np.ascontiguousarray(self.indptr, dtype=np.int64).view()
        for arr in (self.data, self.indices, self.indptr):
            arr.setflags(write=False)

        if self.indptr.shape[0] != self.n_groups + 1:
            raise ValueError(
                f"indptr must have {self.n_groups + 1} entries, got {self.indptr.shape[0]}"
            )

    @property
    def nnz(self) -> int:
        return int(self.indptr[-1])

    def row(self, i: int) -> Tuple[np.ndarray, np.ndarray]:
        """(values, indices) of the non-zeros in group i."""
        start, end = self.indptr[i], self.indptr[i + 1]
        return self.data[start:end], self.indices[start:end]

    @classmethod
    def from_scipy(cls, matrix, orientation: str = "row") -> "SparseMatrixView":
        """
        Wrap an existing CSR (orientation="row") or CSC (orientation="col")
        matrix. No format conversion happens here.
        """
        if orientation == "row":
            if getattr(matrix, "format", None) != "csr":
                raise TypeError("orientation='row' requires a CSR matrix")
            n_groups, n_opposite = matrix.shape
        elif orientation == "col":
            if getattr(matrix, "format", None) != "csc":
                raise TypeError("orientation='col' requires a CSC matrix")
            n_opposite, n_groups = matrix.shape
        else:
            raise ValueError(f"Unknown orientation '{orientation}'. Expected 'row' or 'col'.")

        return cls(matrix.data, matrix.indices, matrix.indptr, n_groups, n_opposite)


class FactorMatrix:
    """Row-major dense factor matrix (dim × k) with entries kept >= 0."""

    def __init__(self, array: np.ndarray):
        if not isinstance(array, np.ndarray) or array.ndim != 2:
            raise ValueError("FactorMatrix expects a 2-D numpy array")
        if array.dtype != np.float64 or not array.flags.c_contiguous:
            raise ValueError("FactorMatrix buffers must be C-contiguous float64")
        if not array.flags.writeable:
            raise ValueError("FactorMatrix buffers must be writeable")
        self.array = array

    @classmethod
    def from_buffer(cls, buffer: np.ndarray, dim: int, k: int) -> "FactorMatrix":
        """View a flat (dim * k) or already 2-D buffer without copying."""
        if buffer.size != dim * k:
            raise ValueError(f"Buffer has {buffer.size} entries, expected {dim} x {k}")
        view = buffer.reshape(dim, k)
        if not np.shares_memory(view, buffer):
            raise ValueError("Buffer cannot be viewed as (dim, k) without a copy")
        return cls(view)

    @property
    def dim(self) -> int:
        return self.array.shape[0]

    @property
    def k(self) -> int:
        return self.array.shape[1]

    def row(self, i: int) -> np.ndarray:
        assert 0 <= i < self.dim, f"row {i} out of range for dim={self.dim}"
        return self.array[i]

    def check_nonneg(self) -> bool:
        return bool(np.all(self.array >= 0))


__all__ = ["SparseMatrixView", "FactorMatrix"]
