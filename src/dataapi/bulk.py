"""
Bulk - chunked execution with ordered or unordered semantics.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, List, Optional, Sequence, TypeVar

from .options import BulkOptions
from .types import AggregatedApiError, DataAPIError, TransportError

__all__ = ["BulkExecutor", "ChunkOutcome", "partition"]

logger = logging.getLogger(__name__)

I = TypeVar("I")
R = TypeVar("R")

# run_chunk(items, remaining_seconds) -> result
ChunkFunction = Callable[[List[I], Optional[float]], R]


@dataclass(frozen=True)
class ChunkOutcome(Generic[I, R]):
    """
    What happened to one chunk.

    Attributes:
        index: Position of the chunk in the input.
        items: The chunk items, in input order.
        result: Value returned by the chunk function on success.
        error: Error raised by the chunk function on failure.
        attempted: False when an ordered bulk stopped before this chunk.
    """

    index: int
    items: list[I] = field(default_factory=list)
    result: R | None = None
    error: DataAPIError | None = None
    attempted: bool = True

    @property
    def succeeded(self) -> bool:
        return self.attempted and self.error is None


def partition(items: Sequence[I], size: int) -> list[list[I]]:
    """Split ``items`` into consecutive chunks of at most ``size`` items."""
    if size <= 0:
        raise ValueError("size must be positive")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


class BulkExecutor:
    """
    Runs a chunk function over the partitions of a list of items.

    Ordered: chunks run one after the other and the first failure stops
    the run; later chunks are reported as not attempted.

    Unordered: every chunk runs, at most ``concurrency`` at a time, and
    outcomes are reported in completion order.

    In both modes a failure surfaces as a single AggregatedApiError
    holding every chunk outcome.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock

    def execute(
        self,
        items: Sequence[I],
        options: BulkOptions,
        run_chunk: ChunkFunction[I, R],
        summarize: Callable[[list[ChunkOutcome[I, R]]], Any] | None = None,
    ) -> list[ChunkOutcome[I, R]]:
        """
        Execute ``run_chunk`` over every chunk of ``items``.

        Args:
            items: Input items.
            options: Ordering, concurrency, chunk size and deadline.
            run_chunk: Called with a chunk and the seconds left before the
                bulk deadline (None when there is no deadline).
            summarize: Builds the partial result attached to the
                aggregated error from the successful outcomes.

        Returns:
            Outcomes of all chunks, all successful.

        Raises:
            AggregatedApiError: If at least one chunk failed.
        """
        chunks = partition(items, options.chunk_size)
        deadline = self._clock() + options.timeout if options.timeout else None

        if options.ordered:
            outcomes = self._run_ordered(chunks, run_chunk, deadline)
        else:
            outcomes = self._run_unordered(chunks, options.concurrency, run_chunk, deadline)

        if any(o.error is not None for o in outcomes):
            succeeded = [o for o in outcomes if o.succeeded]
            partial = summarize(succeeded) if summarize else None
            raise AggregatedApiError(outcomes, partial_result=partial)
        return outcomes

    def _run_ordered(
        self,
        chunks: list[list[I]],
        run_chunk: ChunkFunction[I, R],
        deadline: float | None,
    ) -> list[ChunkOutcome[I, R]]:
        outcomes: list[ChunkOutcome[I, R]] = []
        for index, chunk in enumerate(chunks):
            outcome = self._run_one(index, chunk, run_chunk, deadline)
            outcomes.append(outcome)
            if outcome.error is not None:
                logger.debug("Ordered bulk stopped at chunk %d of %d", index, len(chunks))
                outcomes.extend(
                    ChunkOutcome(index=i, items=c, attempted=False)
                    for i, c in enumerate(chunks[index + 1 :], start=index + 1)
                )
                break
        return outcomes

    def _run_unordered(
        self,
        chunks: list[list[I]],
        concurrency: int,
        run_chunk: ChunkFunction[I, R],
        deadline: float | None,
    ) -> list[ChunkOutcome[I, R]]:
        if not chunks:
            return []
        outcomes: list[ChunkOutcome[I, R]] = []
        workers = min(concurrency, len(chunks))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="dataapi-bulk") as pool:
            futures = [
                pool.submit(self._run_one, index, chunk, run_chunk, deadline)
                for index, chunk in enumerate(chunks)
            ]
            for future in as_completed(futures):
                outcomes.append(future.result())
        return outcomes

    def _run_one(
        self,
        index: int,
        chunk: list[I],
        run_chunk: ChunkFunction[I, R],
        deadline: float | None,
    ) -> ChunkOutcome[I, R]:
        remaining = None if deadline is None else deadline - self._clock()
        if remaining is not None and remaining <= 0:
            error = TransportError("Bulk deadline exceeded before chunk started", timed_out=True)
            return ChunkOutcome(index=index, items=chunk, error=error)
        try:
            result = run_chunk(chunk, remaining)
        except DataAPIError as e:
            logger.debug("Chunk %d (%d items) failed: %s", index, len(chunk), e)
            return ChunkOutcome(index=index, items=chunk, error=e)
        return ChunkOutcome(index=index, items=chunk, result=result)
