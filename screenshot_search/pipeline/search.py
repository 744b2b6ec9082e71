"""Search-path partitioner: every partition is ranked concurrently."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import aclosing

from screenshot_search.config import SEARCH_BATCH_SIZE
from screenshot_search.pipeline.aggregator import merge_rankings
from screenshot_search.pipeline.retry import RetryExecutor
from screenshot_search.pipeline.types import (
    ImageRecord,
    PartitionEvent,
    RemoteModel,
    SearchResult,
    partition,
)

logger = logging.getLogger(__name__)

OnPartitionComplete = Callable[[list[SearchResult], int, int], None]


class SearchPartitioner:
    def __init__(
        self,
        *,
        remote: RemoteModel,
        retry: RetryExecutor,
        batch_size: int = SEARCH_BATCH_SIZE,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._remote = remote
        self._retry = retry
        self._batch_size = batch_size

    async def iter_partitions(
        self, query: str, images: Sequence[ImageRecord]
    ) -> AsyncIterator[PartitionEvent]:
        """Yield one event per partition in completion order.

        Closing the iterator early cancels partitions still in flight.
        """
        groups = partition(images, self._batch_size)
        total = len(groups)
        if total == 0:
            return

        logger.info(
            "Searching %d images in %d batches of %d",
            len(images),
            total,
            self._batch_size,
        )

        tasks = [
            asyncio.ensure_future(self._search_partition(query, index, group))
            for index, group in enumerate(groups)
        ]
        try:
            for fut in asyncio.as_completed(tasks):
                index, similarities = await fut
                yield PartitionEvent(
                    group_index=index,
                    total_groups=total,
                    similarities=tuple(similarities),
                )
        finally:
            for t in tasks:
                if not t.done():
                    t.cancel()

    async def run(
        self,
        query: str,
        images: Sequence[ImageRecord],
        on_batch_complete: OnPartitionComplete | None = None,
    ) -> list[SearchResult]:
        """Rank ``images`` against ``query``; never raises for remote faults."""
        if not images:
            return []

        per_partition: dict[int, list[SearchResult]] = {}
        events = self.iter_partitions(query, images)
        async with aclosing(events):
            async for event in events:
                per_partition[event.group_index] = list(event.similarities)
                if on_batch_complete is not None:
                    on_batch_complete(
                        list(event.similarities), event.group_index, event.total_groups
                    )

        # Tie-break on partition order, not completion order
        ranked = merge_rankings(per_partition[i] for i in sorted(per_partition))
        logger.info("Parallel search complete: %d results found", len(ranked))
        return ranked

    async def _search_partition(
        self, query: str, index: int, group: list[ImageRecord]
    ) -> tuple[int, list[SearchResult]]:
        try:
            results = await self._retry.execute(lambda: self._remote.search(query, group))
        except Exception:
            logger.warning(
                "Search batch %d failed; contributing no results", index + 1, exc_info=True
            )
            return index, []
        return index, list(results or [])
