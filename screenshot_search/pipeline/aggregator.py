"""Pure merge logic for both pipeline paths. No I/O."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import replace

from screenshot_search.pipeline.types import BatchOutcome, ImageRecord, SearchResult


def mark_processing(
    records: Sequence[ImageRecord], image_ids: Iterable[str]
) -> list[ImageRecord]:
    """Move the given ``pending`` records to ``processing``; others are untouched."""
    wanted = set(image_ids)
    return [
        replace(r, status="processing") if r.id in wanted and r.status == "pending" else r
        for r in records
    ]


def apply_outcome(record: ImageRecord, outcome: BatchOutcome) -> ImageRecord:
    """Transition one record to its terminal state.

    Terminal records are returned as-is, which makes replaying an outcome a no-op.
    """
    if record.is_terminal:
        return record
    if outcome.success:
        return replace(
            record,
            status="completed",
            remote_file_ref=outcome.remote_file_ref,
            ocr_text=outcome.ocr_text or "",
            description=outcome.description or "",
            error_reason=None,
        )
    return replace(
        record,
        status="error",
        error_reason=outcome.error or "Processing failed",
    )


def apply_outcomes(
    records: Sequence[ImageRecord], outcomes: Iterable[BatchOutcome]
) -> list[ImageRecord]:
    """Return a new record list with every matching outcome applied.

    Order and identity of the records are preserved; records without an
    outcome are returned unchanged.
    """
    by_id: dict[str, BatchOutcome] = {}
    for o in outcomes:
        by_id.setdefault(o.image_id, o)
    if not by_id:
        return list(records)
    return [apply_outcome(r, by_id[r.id]) if r.id in by_id else r for r in records]


def fail_unfinished(records: Sequence[ImageRecord], reason: str) -> list[ImageRecord]:
    """Mark every record still ``processing`` as ``error``."""
    return [
        replace(r, status="error", error_reason=reason) if r.status == "processing" else r
        for r in records
    ]


def merge_rankings(partitions: Iterable[Sequence[SearchResult]]) -> list[SearchResult]:
    """Merge per-partition rankings into one list sorted by descending score.

    At most one entry per image id survives (the higher score; the first seen
    on a tie). Equal scores keep first-seen order.
    """
    best: dict[str, SearchResult] = {}
    for results in partitions:
        for r in results:
            seen = best.get(r.image_id)
            if seen is None or r.score > seen.score:
                # dict keeps the original insertion slot on overwrite
                best[r.image_id] = r
    # sorted() is stable
    return sorted(best.values(), key=lambda r: r.score, reverse=True)
