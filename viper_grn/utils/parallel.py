"""Bounded worker pool shared by the enrichment, shadow and bootstrap steps."""

from typing import Callable, Iterable, TypeVar

T = TypeVar("T")
R = TypeVar("R")


# ── Worker pool ───────────────────────────────────────────────────────────────

def parallel_map(
    func: Callable[[T], R],
    items: Iterable[T],
    n_workers: int = 1,
) -> list[R]:
    """Apply func to every item, preserving input order in the output.

    With a single worker the items are processed in a plain loop. Otherwise
    they are dispatched through joblib; joblib returns results in submission
    order, so the output never depends on completion order. An exception in
    any unit propagates and aborts the whole map.

    Args:
        func: Function applied to each item. Must not mutate shared inputs.
        items: Units of work (e.g. sample indices or regulator names).
        n_workers: Maximum number of concurrent workers (default 1).

    Returns:
        List of results, one per item, in input order.
    """
    items = list(items)
    n_workers = max(1, int(n_workers))
    if n_workers == 1 or len(items) <= 1:
        return [func(item) for item in items]

    from joblib import Parallel, delayed

    return Parallel(n_jobs=min(n_workers, len(items)))(
        delayed(func)(item) for item in items
    )
