from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence
from contextlib import aclosing

from screenshot_search.pipeline.runner import PipelineRunner
from screenshot_search.pipeline.types import BatchOutcome, ImageRecord, SearchResult
from screenshot_search.state import (
    BatchCompleted,
    Event,
    ImagesAdded,
    SearchCleared,
    SearchCompleted,
    SearchFailed,
    SearchStarted,
    SessionState,
    UploadFailed,
    UploadFinished,
    UploadStarted,
    reduce,
)

logger = logging.getLogger(__name__)

Listener = Callable[[SessionState, Event], None]


class Session:
    """Owns the image collection and search state for one in-memory session.

    All state changes are applied through :func:`screenshot_search.state.reduce`.
    Upload runs are serialized; a run started while another is in flight
    waits for it to finish.
    """

    def __init__(self, *, runner: PipelineRunner) -> None:
        self._runner = runner
        self._state = SessionState()
        self._listeners: list[Listener] = []
        self._upload_lock = asyncio.Lock()

    @property
    def state(self) -> SessionState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener(new_state, event)`` after every event; returns an unsubscribe."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def dispatch(self, event: Event) -> SessionState:
        self._state = reduce(self._state, event)
        for listener in list(self._listeners):
            listener(self._state, event)
        return self._state

    def add_images(self, images: Iterable[ImageRecord]) -> list[ImageRecord]:
        added = list(images)
        self.dispatch(ImagesAdded(images=tuple(added)))
        return added

    async def process(
        self,
        image_ids: Sequence[str] | None = None,
        batch_size: int | None = None,
    ) -> list[BatchOutcome]:
        """Upload and analyze the given images (default: every pending one)."""
        async with self._upload_lock:
            wanted = set(image_ids) if image_ids is not None else None
            images = [
                img
                for img in self._state.images
                if img.status == "pending" and (wanted is None or img.id in wanted)
            ]
            if not images:
                return []

            self.dispatch(UploadStarted(image_ids=tuple(img.id for img in images)))
            outcomes: list[BatchOutcome] = []
            try:
                groups = self._runner.scheduler(batch_size).iter_groups(images)
                async with aclosing(groups):
                    async for event in groups:
                        outcomes.extend(event.outcomes)
                        self.dispatch(
                            BatchCompleted(
                                outcomes=event.outcomes,
                                group_index=event.group_index,
                                total_groups=event.total_groups,
                            )
                        )
            except asyncio.CancelledError:
                logger.warning("Upload run cancelled")
                self.dispatch(UploadFailed(reason="Upload cancelled"))
                raise
            except Exception:
                logger.exception("Batch processing failed")
                self.dispatch(UploadFailed())
            finally:
                self.dispatch(UploadFinished())

            failed = sum(1 for o in outcomes if not o.success)
            logger.info(
                "Upload run finished: %d images, %d failed", len(images), failed
            )
            return outcomes

    async def search(self, query: str, batch_size: int | None = None) -> list[SearchResult]:
        """Rank completed images for ``query`` and record the results in state."""
        self.dispatch(SearchStarted(query=query))

        completed = self._state.completed_images()
        if not completed:
            self.dispatch(SearchCompleted(results=()))
            return []

        try:
            response = await self._runner.run_search(query, completed, batch_size)
        except Exception:
            logger.exception("Error during search")
            self.dispatch(SearchFailed())
            return []

        state = self.dispatch(SearchCompleted(results=tuple(response["similarities"])))
        return list(state.search.results)

    def clear_search(self) -> None:
        self.dispatch(SearchCleared())
