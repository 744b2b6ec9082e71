"""Upload-path scheduler: fixed-size groups, concurrent within, sequential across."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import aclosing

from screenshot_search.config import INTER_GROUP_DELAY_SECONDS, UPLOAD_BATCH_SIZE
from screenshot_search.pipeline.retry import Sleep
from screenshot_search.pipeline.task import ImageAnalysisTask
from screenshot_search.pipeline.types import BatchOutcome, GroupEvent, ImageRecord, partition

logger = logging.getLogger(__name__)

OnBatchComplete = Callable[[list[BatchOutcome], int, int], None]


class BatchScheduler:
    def __init__(
        self,
        *,
        task: ImageAnalysisTask,
        batch_size: int = UPLOAD_BATCH_SIZE,
        inter_group_delay: float = INTER_GROUP_DELAY_SECONDS,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._task = task
        self._batch_size = batch_size
        self._inter_group_delay = inter_group_delay
        self._sleep = sleep

    @property
    def batch_size(self) -> int:
        return self._batch_size

    async def iter_groups(self, images: Sequence[ImageRecord]) -> AsyncIterator[GroupEvent]:
        """Yield one event per group, in group order.

        The next group is not started until the consumer has taken the
        previous event, so a slow consumer throttles the run.
        """
        groups = partition(images, self._batch_size)
        total = len(groups)
        logger.info(
            "Processing %d images in %d batches of %d",
            len(images),
            total,
            self._batch_size,
        )

        for index, group in enumerate(groups):
            logger.info("Processing batch %d/%d (%d images)", index + 1, total, len(group))
            try:
                outcomes = await self._run_group(group)
            except Exception as e:
                logger.error("Batch %d/%d failed: %s", index + 1, total, e, exc_info=True)
                reason = str(e) or "Batch failed"
                outcomes = [BatchOutcome.failed(img.id, reason) for img in group]

            yield GroupEvent(group_index=index, total_groups=total, outcomes=tuple(outcomes))

            if index < total - 1 and self._inter_group_delay > 0:
                await self._sleep(self._inter_group_delay)

    async def run(
        self,
        images: Sequence[ImageRecord],
        on_batch_complete: OnBatchComplete | None = None,
    ) -> list[BatchOutcome]:
        """Process every image; returns one outcome per image in input order."""
        results: list[BatchOutcome] = []
        groups = self.iter_groups(images)
        async with aclosing(groups):
            async for event in groups:
                results.extend(event.outcomes)
                if on_batch_complete is not None:
                    on_batch_complete(list(event.outcomes), event.group_index, event.total_groups)

        succeeded = sum(1 for r in results if r.success)
        logger.info(
            "Batch processing complete: %d succeeded, %d failed",
            succeeded,
            len(results) - succeeded,
        )
        return results

    async def _run_group(self, group: list[ImageRecord]) -> list[BatchOutcome]:
        settled = await asyncio.gather(
            *(self._task.process(img) for img in group),
            return_exceptions=True,
        )

        # gather preserves submission order, so index i is group[i]
        outcomes: list[BatchOutcome] = []
        for img, res in zip(group, settled, strict=True):
            if isinstance(res, BatchOutcome):
                outcomes.append(res)
            elif isinstance(res, Exception):
                logger.error("Batch processing failed for %s: %s", img.filename, res)
                outcomes.append(BatchOutcome.failed(img.id, str(res) or "Batch processing failed"))
            else:
                raise res
        return outcomes
