"""
scratch.py
Per-run scratch memory: one private buffer per worker plus the shared
regularization vector. Everything is acquired up front, before any numeric
work, and released on every exit path.
"""

from __future__ import annotations

import logging
from typing import List, Optional

import numpy as np

LOGGER = logging.getLogger(__name__)


class ResourceExhaustedError(MemoryError):
    """Raised when scratch memory for a run cannot be allocated."""
    pass


def _allocate(size: int) -> np.ndarray:
    return np.zeros(size, dtype=np.float64)


class ScratchArena:
    """
    Usage:
        with ScratchArena(n_workers=4, width=k, shared_width=k) as arena:
            arena.shared            # regularization vector, read by all workers
            arena.buffer(worker_id) # private to one worker
    """

    def __init__(self, n_workers: int, width: int, shared_width: int = 0):
        if n_workers < 1:
            raise ValueError("n_workers must be >= 1")
        self.n_workers = n_workers
        self.width = width
        self.shared_width = shared_width
        self.shared: Optional[np.ndarray] = None
        self._buffers: List[np.ndarray] = []

    def __enter__(self) -> "ScratchArena":
        try:
            self.shared = _allocate(self.shared_width)
            for _ in range(self.n_workers):
                self._buffers.append(_allocate(self.width))
        except MemoryError as exc:
            allocated = len(self._buffers)
            self.release()
            raise ResourceExhaustedError(
                f"Could not allocate scratch memory for {self.n_workers} workers "
                f"({allocated} buffer(s) of {self.width} entries succeeded)"
            ) from exc
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.release()
        return False

    @property
    def allocated(self) -> int:
        return len(self._buffers)

    def buffer(self, worker_id: int) -> np.ndarray:
        return self._buffers[worker_id]

    def release(self) -> None:
        self._buffers.clear()
        self.shared = None


__all__ = ["ResourceExhaustedError", "ScratchArena"]
