from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence

from screenshot_search.pipeline.config import PipelineConfig
from screenshot_search.pipeline.retry import RetryExecutor, Sleep
from screenshot_search.pipeline.scheduler import BatchScheduler, OnBatchComplete
from screenshot_search.pipeline.search import OnPartitionComplete, SearchPartitioner
from screenshot_search.pipeline.task import ImageAnalysisTask
from screenshot_search.pipeline.types import BatchOutcome, ImageRecord, RemoteModel, SearchResult

logger = logging.getLogger(__name__)


class PipelineRunner:
    """Builds the scheduler and partitioner for one remote model and config."""

    def __init__(
        self,
        *,
        remote: RemoteModel,
        cfg: PipelineConfig | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        self._remote = remote
        self._cfg = cfg or PipelineConfig()
        self._sleep = sleep or asyncio.sleep

    @property
    def config(self) -> PipelineConfig:
        return self._cfg

    def _retry(self) -> RetryExecutor:
        return RetryExecutor(
            max_retries=self._cfg.max_retries,
            initial_delay=self._cfg.retry_base_seconds,
            sleep=self._sleep,
        )

    def scheduler(self, batch_size: int | None = None) -> BatchScheduler:
        task = ImageAnalysisTask(remote=self._remote, retry=self._retry())
        return BatchScheduler(
            task=task,
            batch_size=self._cfg.upload_batch_size if batch_size is None else batch_size,
            inter_group_delay=self._cfg.inter_group_delay,
            sleep=self._sleep,
        )

    def partitioner(self, batch_size: int | None = None) -> SearchPartitioner:
        return SearchPartitioner(
            remote=self._remote,
            retry=self._retry(),
            batch_size=self._cfg.search_batch_size if batch_size is None else batch_size,
        )

    async def run_upload_batch(
        self,
        images: Sequence[ImageRecord],
        batch_size: int | None = None,
        on_progress: OnBatchComplete | None = None,
    ) -> list[BatchOutcome]:
        logger.info(
            "Upload run: images=%d batch_size=%d",
            len(images),
            self._cfg.upload_batch_size if batch_size is None else batch_size,
        )
        return await self.scheduler(batch_size).run(images, on_progress)

    async def run_search(
        self,
        query: str,
        images: Sequence[ImageRecord],
        batch_size: int | None = None,
        on_progress: OnPartitionComplete | None = None,
    ) -> dict[str, list[SearchResult]]:
        if not images:
            return {"similarities": []}
        ranked = await self.partitioner(batch_size).run(query, images, on_progress)
        logger.info("Search run: images=%d results=%d", len(images), len(ranked))
        return {"similarities": ranked}


def _default_runner(remote: RemoteModel | None) -> PipelineRunner:
    if remote is None:
        from screenshot_search.gemini import GeminiRemoteModel

        remote = GeminiRemoteModel()
    cfg = PipelineConfig.from_env()
    cfg.validate()
    return PipelineRunner(remote=remote, cfg=cfg)


async def run_upload_batch(
    images: Sequence[ImageRecord],
    batch_size: int | None = None,
    on_progress: Callable[[list[BatchOutcome], int, int], None] | None = None,
    *,
    remote: RemoteModel | None = None,
) -> list[BatchOutcome]:
    """Upload and analyze ``images``; one outcome per image, in input order."""
    if not images:
        return []
    return await _default_runner(remote).run_upload_batch(images, batch_size, on_progress)


async def run_search(
    query: str,
    images: Sequence[ImageRecord],
    batch_size: int | None = None,
    on_progress: Callable[[list[SearchResult], int, int], None] | None = None,
    *,
    remote: RemoteModel | None = None,
) -> dict[str, list[SearchResult]]:
    """Rank ``images`` for ``query``. Empty input short-circuits without remote calls."""
    if not images:
        return {"similarities": []}
    return await _default_runner(remote).run_search(query, images, batch_size, on_progress)
