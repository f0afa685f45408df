"""
parallel.py
Fixed-size thread pools for the row sweeps and the column-sum reduction.

Workers are identified by an integer id in [0, n_workers) so that each one
can pick its private scratch buffer out of a ScratchArena.
"""

from __future__ import annotations

import itertools
import logging
import threading
from typing import Callable, List, Optional

import numpy as np

from .scratch import ScratchArena

LOGGER = logging.getLogger(__name__)


def run_workers(
    n_workers: int,
    target: Callable[[int], None],
    stop_event: Optional[threading.Event] = None,
) -> None:
    """
    Run target(worker_id) on n_workers threads and wait for all of them.
    The first exception raised by any worker is re-raised here, after the join.
    """
    if n_workers <= 1:
        target(0)
        return

    errors: List[BaseException] = []
    errors_lock = threading.Lock()

    def _guarded(worker_id: int) -> None:
        try:
            target(worker_id)
        except Exception as exc:
            with errors_lock:
                errors.append(exc)
            if stop_event is not None:
                stop_event.set()

    threads = [
        threading.Thread(target=_guarded, args=(wid,), name=f"poismf-worker-{wid}", daemon=True)
        for wid in range(n_workers)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    if errors:
        LOGGER.error("Worker failed (%d error(s)); first: %r", len(errors), errors[0])
        raise errors[0]


def sweep_rows(
    n_rows: int,
    task: Callable[[int, np.ndarray], None],
    arena: ScratchArena,
) -> None:
    """
    Call task(row, scratch) once for every row in [0, n_rows).

    Rows are handed out dynamically from a shared counter. Returns only once
    every worker has finished, which is the barrier between the A and B sweeps.
    """
    counter = itertools.count()
    counter_lock = threading.Lock()
    stop = threading.Event()

    def _worker(worker_id: int) -> None:
        scratch = arena.buffer(worker_id)
        while not stop.is_set():
            with counter_lock:
                row = next(counter)
            if row >= n_rows:
                return
            task(row, scratch)

    run_workers(min(arena.n_workers, max(n_rows, 1)), _worker, stop)


__all__ = ["run_workers", "sweep_rows"]
