"""Unit tests for the pure merge functions (no I/O)."""

from __future__ import annotations

from dataclasses import replace

from screenshot_search.pipeline.aggregator import (
    apply_outcomes,
    fail_unfinished,
    mark_processing,
    merge_rankings,
)
from screenshot_search.pipeline.types import BatchOutcome, SearchResult

OK = BatchOutcome(
    success=True,
    image_id="id-1",
    remote_file_ref="files/1",
    ocr_text="hello",
    description="a greeting",
)
FAIL = BatchOutcome.failed("id-2", "upload rejected")


class TestApplyOutcomes:
    def test_transitions_matching_records(self, make_images):
        records = mark_processing(make_images(3), ["id-0", "id-1", "id-2"])

        merged = apply_outcomes(records, [OK, FAIL])

        assert [r.status for r in merged] == ["processing", "completed", "error"]
        assert merged[1].ocr_text == "hello"
        assert merged[1].description == "a greeting"
        assert merged[1].remote_file_ref == "files/1"
        assert merged[1].error_reason is None
        assert merged[2].error_reason == "upload rejected"
        # untouched record is the same object
        assert merged[0] is records[0]

    def test_preserves_order_and_identity(self, make_images):
        records = make_images(3)
        merged = apply_outcomes(records, [FAIL, OK])
        assert [r.id for r in merged] == ["id-0", "id-1", "id-2"]

    def test_replay_is_idempotent(self, make_images):
        records = mark_processing(make_images(3), ["id-1", "id-2"])
        once = apply_outcomes(records, [OK, FAIL])
        twice = apply_outcomes(once, [OK, FAIL])
        assert twice == once

    def test_terminal_records_never_regress(self, make_images):
        records = apply_outcomes(make_images(2), [OK])
        conflicting = BatchOutcome.failed("id-1", "late failure")

        merged = apply_outcomes(records, [conflicting])

        assert merged[1].status == "completed"
        assert merged[1].error_reason is None

    def test_missing_fields_default_to_empty(self, make_images):
        merged = apply_outcomes(make_images(1), [BatchOutcome(success=True, image_id="id-0")])
        assert merged[0].status == "completed"
        assert merged[0].ocr_text == ""
        assert merged[0].description == ""

    def test_failure_without_reason_gets_generic_one(self, make_images):
        merged = apply_outcomes(make_images(1), [BatchOutcome(success=False, image_id="id-0")])
        assert merged[0].error_reason == "Processing failed"

    def test_no_outcomes_returns_copy(self, make_images):
        records = make_images(2)
        merged = apply_outcomes(records, [])
        assert merged == records
        assert merged is not records


class TestStatusHelpers:
    def test_mark_processing_only_touches_pending(self, make_images):
        records = make_images(3)
        records[2] = replace(records[2], status="error", error_reason="x")

        marked = mark_processing(records, ["id-0", "id-2"])

        assert [r.status for r in marked] == ["processing", "pending", "error"]

    def test_fail_unfinished(self, make_images):
        records = apply_outcomes(mark_processing(make_images(3), ["id-0", "id-1"]), [OK])

        failed = fail_unfinished(records, "Batch processing failed")

        assert [r.status for r in failed] == ["error", "completed", "pending"]
        assert failed[0].error_reason == "Batch processing failed"


class TestMergeRankings:
    def test_merges_across_partitions(self):
        merged = merge_rankings(
            [
                [SearchResult("a", 0.9)],
                [SearchResult("b", 0.95), SearchResult("c", 0.2)],
            ]
        )
        assert [(r.image_id, r.score) for r in merged] == [("b", 0.95), ("a", 0.9), ("c", 0.2)]

    def test_ties_keep_first_seen_order(self):
        merged = merge_rankings(
            [
                [SearchResult("p", 0.5), SearchResult("q", 0.5)],
                [SearchResult("r", 0.5)],
            ]
        )
        assert [r.image_id for r in merged] == ["p", "q", "r"]

    def test_duplicate_keeps_higher_score(self):
        merged = merge_rankings(
            [
                [SearchResult("x", 0.4), SearchResult("y", 0.6)],
                [SearchResult("x", 0.7, "better")],
            ]
        )
        assert merged == [SearchResult("x", 0.7, "better"), SearchResult("y", 0.6)]

    def test_duplicate_equal_score_keeps_first(self):
        merged = merge_rankings([[SearchResult("x", 0.5, "one")], [SearchResult("x", 0.5, "two")]])
        assert merged == [SearchResult("x", 0.5, "one")]

    def test_empty(self):
        assert merge_rankings([]) == []
        assert merge_rankings([[], []]) == []
