"""Task-parallel executor shared by the group loop and the all-pairs search."""

import logging
from typing import Callable, Iterable, List, Sequence

from joblib import Parallel, delayed, effective_n_jobs


class TaskExecutor:
    """
    Thin wrapper over :class:`joblib.Parallel`.

    A single executor instance is used for both levels of data parallelism:
    independent analysis groups and independent chunks of the all-pairs
    distance search. Results are returned in submission order.

    Parameters
    ----------
    n_jobs : int
        Number of workers, joblib semantics (-1 uses all cores, 1 runs inline).
    backend : str
        joblib backend name.
    """

    def __init__(self, n_jobs: int = 1, backend: str = "loky") -> None:
        if n_jobs == 0:
            raise ValueError("n_jobs must be non-zero")
        self.n_jobs = n_jobs
        self.backend = backend

    @property
    def workers(self) -> int:
        """Resolved number of workers."""
        return effective_n_jobs(self.n_jobs)

    def map(self, func: Callable, items: Iterable, *args, **kwargs) -> List:
        """Apply ``func(item, *args, **kwargs)`` to every item."""
        items = list(items)
        if not items:
            return []

        if self.workers == 1 or len(items) == 1:
            return [func(item, *args, **kwargs) for item in items]

        logger = logging.getLogger(__name__)
        logger.debug(f"Dispatching {len(items)} task(s) to {self.workers} worker(s) ({self.backend})")
        return Parallel(n_jobs=self.n_jobs, backend=self.backend)(
            delayed(func)(item, *args, **kwargs) for item in items
        )

    def sequential(self) -> "TaskExecutor":
        """Return an inline executor for work nested inside an already parallel task."""
        return TaskExecutor(n_jobs=1, backend=self.backend)


def chunked(values: Sequence, size: int) -> List[Sequence]:
    """Split a sequence into consecutive chunks of at most ``size`` items."""
    if size <= 0:
        raise ValueError(f"chunk size must be positive, got {size}")
    return [values[i : i + size] for i in range(0, len(values), size)]
