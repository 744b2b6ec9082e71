"""Session state as a pure reducer: ``reduce(state, event) -> state``.

The pipeline returns outcomes; every change to the image collection, upload
progress and search state goes through :func:`reduce`.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime

from screenshot_search.pipeline.aggregator import (
    apply_outcomes,
    fail_unfinished,
    mark_processing,
)
from screenshot_search.pipeline.types import (
    BatchOutcome,
    ImageRecord,
    ProgressRecord,
    SearchResult,
)

BATCH_FAILED_REASON = "Batch processing failed"


@dataclass(frozen=True)
class UploadRun:
    image_ids: tuple[str, ...]
    progress: ProgressRecord


@dataclass(frozen=True)
class SearchState:
    query: str = ""
    results: tuple[SearchResult, ...] = ()
    is_searching: bool = False
    last_search_time: datetime | None = None


@dataclass(frozen=True)
class SessionState:
    images: tuple[ImageRecord, ...] = ()
    upload: UploadRun | None = None
    search: SearchState = field(default_factory=SearchState)

    @property
    def upload_progress(self) -> ProgressRecord | None:
        return self.upload.progress if self.upload else None

    def get_image(self, image_id: str) -> ImageRecord | None:
        return next((img for img in self.images if img.id == image_id), None)

    def completed_images(self) -> list[ImageRecord]:
        return [img for img in self.images if img.status == "completed"]


# -- Events -------------------------------------------------------------------


@dataclass(frozen=True)
class ImagesAdded:
    images: tuple[ImageRecord, ...]


@dataclass(frozen=True)
class UploadStarted:
    image_ids: tuple[str, ...]


@dataclass(frozen=True)
class BatchCompleted:
    outcomes: tuple[BatchOutcome, ...]
    group_index: int
    total_groups: int


@dataclass(frozen=True)
class UploadFailed:
    reason: str = BATCH_FAILED_REASON


@dataclass(frozen=True)
class UploadFinished:
    pass


@dataclass(frozen=True)
class SearchStarted:
    query: str


@dataclass(frozen=True)
class SearchCompleted:
    results: tuple[SearchResult, ...]
    at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class SearchFailed:
    at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class SearchCleared:
    pass


Event = (
    ImagesAdded
    | UploadStarted
    | BatchCompleted
    | UploadFailed
    | UploadFinished
    | SearchStarted
    | SearchCompleted
    | SearchFailed
    | SearchCleared
)


def _progress(images: tuple[ImageRecord, ...], run_ids: tuple[str, ...], label: str) -> ProgressRecord:
    wanted = set(run_ids)
    done = sum(1 for img in images if img.id in wanted and img.is_terminal)
    return ProgressRecord.compute(total=len(run_ids), completed=done, current_label=label)


def reduce(state: SessionState, event: Event) -> SessionState:
    if isinstance(event, ImagesAdded):
        known = {img.id for img in state.images}
        fresh = tuple(img for img in event.images if img.id not in known)
        return replace(state, images=state.images + fresh)

    if isinstance(event, UploadStarted):
        images = tuple(mark_processing(state.images, event.image_ids))
        label = f"Processing {len(event.image_ids)} images in batches..."
        return replace(
            state,
            images=images,
            upload=UploadRun(
                image_ids=event.image_ids,
                progress=_progress(images, event.image_ids, label),
            ),
        )

    if isinstance(event, BatchCompleted):
        images = tuple(apply_outcomes(state.images, event.outcomes))
        upload = state.upload
        if upload is not None:
            label = f"Batch {event.group_index + 1}/{event.total_groups} complete"
            upload = replace(upload, progress=_progress(images, upload.image_ids, label))
        return replace(state, images=images, upload=upload)

    if isinstance(event, UploadFailed):
        return replace(state, images=tuple(fail_unfinished(state.images, event.reason)))

    if isinstance(event, UploadFinished):
        return replace(state, upload=None)

    if isinstance(event, SearchStarted):
        return replace(state, search=replace(state.search, query=event.query, is_searching=True))

    if isinstance(event, SearchCompleted):
        known = {img.id for img in state.images}
        results = tuple(r for r in event.results if r.image_id in known)
        return replace(
            state,
            search=replace(
                state.search,
                results=results,
                is_searching=False,
                last_search_time=event.at,
            ),
        )

    if isinstance(event, SearchFailed):
        return replace(
            state,
            search=replace(
                state.search, results=(), is_searching=False, last_search_time=event.at
            ),
        )

    if isinstance(event, SearchCleared):
        return replace(state, search=SearchState())

    raise TypeError(f"Unknown event: {type(event).__name__}")
