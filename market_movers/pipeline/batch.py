"""Concurrent fan-out helpers: settled-style gather and chunked batch fetching.

``gather`` runs independent I/O-bound calls on a thread pool and returns one
:class:`Outcome` per task, so a slow or failing provider never blocks or
cancels its siblings. ``ChunkedBatchFetcher`` splits a symbol universe under a
provider's request-size ceiling and fans the chunks out through ``gather``.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, List, Sequence, Tuple

from market_movers.core.logger import logger
from market_movers.models.datatypes import Outcome, ProviderBatchRequest

Task = Tuple[str, Callable[[], Any]]


def gather(tasks: Sequence[Task], max_workers: int = 8) -> List[Outcome]:
    """Run every task concurrently and settle each one.

    Args:
        tasks: ``(name, callable)`` pairs; callables take no arguments.
        max_workers: Upper bound on concurrent threads.

    Returns:
        One :class:`Outcome` per task, in submission order.
    """
    if not tasks:
        return []

    workers = max(1, min(max_workers, len(tasks)))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [(name, executor.submit(fn)) for name, fn in tasks]
        outcomes: List[Outcome] = []
        for name, future in futures:
            try:
                outcomes.append(Outcome(name=name, value=future.result()))
            except Exception as exc:
                logger.warning(f"gather: task '{name}' failed: {exc}")
                outcomes.append(Outcome(name=name, error=f"{type(exc).__name__}: {exc}"))
    return outcomes


class ChunkedBatchFetcher:
    """Fetch a large symbol set in provider-sized chunks.

    Args:
        chunk_size: Provider's per-request symbol ceiling.
        max_workers: Concurrent chunk requests.
    """

    def __init__(self, chunk_size: int, max_workers: int = 5) -> None:
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
        self.chunk_size = chunk_size
        self.max_workers = max_workers

    def fetch_all(
        self,
        symbols: Sequence[str],
        fetch_chunk: Callable[[List[str]], Sequence[Any]],
        label: str = "batch",
    ) -> List[Any]:
        """Call ``fetch_chunk`` once per chunk and concatenate successful results.

        A failing chunk is logged and skipped; the other chunks still contribute.
        """
        request = ProviderBatchRequest(tuple(symbols), self.chunk_size)
        if not request.symbols:
            return []

        tasks: List[Task] = [
            (f"{label}[{i}]", (lambda chunk=chunk: fetch_chunk(chunk)))
            for i, chunk in enumerate(request.chunks())
        ]
        outcomes = gather(tasks, self.max_workers)

        merged: List[Any] = []
        failed = 0
        for outcome in outcomes:
            if outcome.ok:
                merged.extend(outcome.value or [])
            else:
                failed += 1
        logger.info(
            f"ChunkedBatchFetcher[{label}]: {len(symbols)} symbols in "
            f"{request.chunk_count} chunks ({failed} failed) → {len(merged)} records"
        )
        return merged
