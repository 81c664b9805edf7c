"""Worker pool — fork, let every worker drain a shared row counter, join.

The builder does not care how threads are made; it needs two things:

* :class:`RowCounter` — fetch-and-increment that hands each row index
  to exactly one worker, exactly once.
* :func:`run_and_join` — start *n* workers and block until all of them
  have returned.  The first exception raised by any worker is re-raised
  in the caller.

Threads are dispatched through ``joblib.Parallel`` with the threading
backend (shared memory, so workers can write into one numpy array).
With ``n_workers == 1`` joblib runs the worker in the calling thread.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional, TypeVar

from joblib import Parallel, cpu_count, delayed

__all__ = [
    "RowCounter",
    "AbortFlag",
    "resolve_worker_count",
    "run_and_join",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RowCounter:
    """Thread-safe monotonically increasing counter.

    Parameters
    ----------
    stop : int
        Exclusive upper bound; :meth:`claim` returns ``None`` once
        every index below *stop* has been handed out.
    """

    def __init__(self, stop: int, start: int = 0):
        self._next = start
        self._stop = stop
        self._lock = threading.Lock()

    def get_and_increment(self) -> int:
        with self._lock:
            value = self._next
            self._next += 1
            return value

    def claim(self) -> Optional[int]:
        """Return the next unclaimed index, or ``None`` when exhausted."""
        i = self.get_and_increment()
        return i if i < self._stop else None

    def __iter__(self):
        i = self.claim()
        while i is not None:
            yield i
            i = self.claim()


class AbortFlag:
    """Set by a failing worker so the others stop claiming work."""

    def __init__(self):
        self._event = threading.Event()

    def set(self):
        self._event.set()

    def __bool__(self) -> bool:
        return self._event.is_set()


def resolve_worker_count(
    use_multithreading: bool,
    n_workers: Optional[int] = None,
    n_tasks: Optional[int] = None,
) -> int:
    """Pool size: 1, else *n_workers* or the CPU count, capped at *n_tasks*."""
    if not use_multithreading:
        return 1
    n = n_workers if n_workers is not None else cpu_count()
    if n_tasks is not None:
        n = min(n, n_tasks)
    return max(1, n)


def run_and_join(
    worker: Callable[[int, int], T],
    n_workers: int,
) -> List[T]:
    """Run ``worker(index, n_workers)`` on *n_workers* threads and join.

    Returns
    -------
    list
        One return value per worker, in worker order.
    """
    logger.debug(f"Starting {n_workers} worker thread(s)")
    return Parallel(n_jobs=n_workers, backend="threading")(
        delayed(worker)(k, n_workers) for k in range(n_workers)
    )
