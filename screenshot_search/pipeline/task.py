from __future__ import annotations

import logging

from screenshot_search.pipeline.retry import RetryExecutor
from screenshot_search.pipeline.types import BatchOutcome, ImageRecord, RemoteModel

logger = logging.getLogger(__name__)


class ImageAnalysisTask:
    """Upload one image, analyze it, and report the outcome as data.

    ``process`` never raises for remote faults: retry exhaustion or a
    non-retryable error becomes a ``success=False`` outcome so one image
    cannot abort its siblings.
    """

    def __init__(self, *, remote: RemoteModel, retry: RetryExecutor) -> None:
        self._remote = remote
        self._retry = retry

    async def process(self, image: ImageRecord) -> BatchOutcome:
        try:
            remote_ref = await self._retry.execute(
                lambda: self._remote.upload_file(image.source, image.mime_type)
            )
            analysis = await self._retry.execute(
                lambda: self._remote.analyze(remote_ref, image.mime_type)
            )
        except Exception as e:
            logger.warning("Failed to process image %s: %s", image.filename, e)
            return BatchOutcome.failed(image.id, str(e) or "Processing failed")

        return BatchOutcome(
            success=True,
            image_id=image.id,
            remote_file_ref=remote_ref,
            ocr_text=analysis.ocr_text,
            description=analysis.description,
        )
