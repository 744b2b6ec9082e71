"""Unit tests for the session reducer and the Session state holder."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from types import SimpleNamespace

import pytest

from screenshot_search.pipeline.config import PipelineConfig
from screenshot_search.pipeline.runner import PipelineRunner
from screenshot_search.pipeline.types import BatchOutcome, ProgressRecord, SearchResult
from screenshot_search.session import Session
from screenshot_search.state import (
    BatchCompleted,
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

ALWAYS = 10_000


def _ok(image_id: str) -> BatchOutcome:
    return BatchOutcome(success=True, image_id=image_id, ocr_text="t", description="d")


class TestProgressRecord:
    def test_rounds_half_up(self):
        assert ProgressRecord.compute(total=8, completed=1, current_label="").percentage == 13

    def test_zero_total(self):
        assert ProgressRecord.compute(total=0, completed=0, current_label="").percentage == 0

    def test_clamped(self):
        assert ProgressRecord.compute(total=2, completed=5, current_label="").percentage == 100
        assert ProgressRecord.compute(total=2, completed=-1, current_label="").percentage == 0


class TestReducer:
    def _started(self, images) -> SessionState:
        state = reduce(SessionState(), ImagesAdded(images=tuple(images)))
        return reduce(state, UploadStarted(image_ids=tuple(img.id for img in images)))

    def test_images_added_ignores_known_ids(self, make_images):
        images = make_images(2)
        state = reduce(SessionState(), ImagesAdded(images=tuple(images)))
        state = reduce(state, ImagesAdded(images=tuple(images)))
        assert [img.id for img in state.images] == ["id-0", "id-1"]

    def test_upload_started_marks_processing(self, make_images):
        state = self._started(make_images(3))

        assert {img.status for img in state.images} == {"processing"}
        assert state.upload_progress == ProgressRecord(
            total=3,
            completed=0,
            current_label="Processing 3 images in batches...",
            percentage=0,
        )

    def test_progress_counts_actual_outcomes(self, make_images):
        """Progress follows settled images, whatever the batch size."""
        state = self._started(make_images(7))

        state = reduce(
            state,
            BatchCompleted(
                outcomes=tuple(_ok(f"id-{i}") for i in range(3)), group_index=0, total_groups=3
            ),
        )

        p = state.upload_progress
        assert p is not None
        assert (p.completed, p.total, p.percentage) == (3, 7, 43)
        assert p.current_label == "Batch 1/3 complete"

    def test_batch_replay_is_idempotent(self, make_images):
        state = self._started(make_images(4))
        event = BatchCompleted(
            outcomes=(_ok("id-0"), BatchOutcome.failed("id-1", "boom")),
            group_index=0,
            total_groups=2,
        )

        once = reduce(state, event)
        twice = reduce(once, event)

        assert twice == once
        assert twice.upload_progress is not None
        assert twice.upload_progress.completed == 2

    def test_upload_failed_marks_processing_as_error(self, make_images):
        state = self._started(make_images(3))
        state = reduce(state, BatchCompleted(outcomes=(_ok("id-0"),), group_index=0, total_groups=2))

        state = reduce(state, UploadFailed())

        assert [img.status for img in state.images] == ["completed", "error", "error"]
        assert state.images[1].error_reason == "Batch processing failed"

    def test_upload_finished_clears_progress(self, make_images):
        state = reduce(self._started(make_images(1)), UploadFinished())
        assert state.upload_progress is None

    def test_search_lifecycle(self, make_images):
        state = reduce(SessionState(), ImagesAdded(images=tuple(make_images(2))))
        state = reduce(state, SearchStarted(query="login page"))
        assert state.search.is_searching is True
        assert state.search.query == "login page"

        at = datetime(2026, 1, 1, tzinfo=UTC)
        state = reduce(
            state,
            SearchCompleted(
                results=(SearchResult("id-1", 0.9), SearchResult("ghost", 0.8)), at=at
            ),
        )

        assert state.search.is_searching is False
        assert state.search.results == (SearchResult("id-1", 0.9),)
        assert state.search.last_search_time == at

    def test_search_failed_resets_results(self, make_images):
        state = reduce(SessionState(), ImagesAdded(images=tuple(make_images(1))))
        state = reduce(state, SearchCompleted(results=(SearchResult("id-0", 0.5),)))
        state = reduce(state, SearchStarted(query="again"))

        state = reduce(state, SearchFailed())

        assert state.search.results == ()
        assert state.search.is_searching is False

    def test_search_cleared(self):
        state = reduce(SessionState(), SearchStarted(query="q"))
        assert reduce(state, SearchCleared()).search.query == ""

    def test_unknown_event_raises(self):
        with pytest.raises(TypeError):
            reduce(SessionState(), object())  # type: ignore[arg-type]


@pytest.fixture
def session(fake_remote, fake_sleep) -> Session:
    cfg = PipelineConfig(upload_batch_size=2, search_batch_size=2, max_retries=1)
    return Session(runner=PipelineRunner(remote=fake_remote, cfg=cfg, sleep=fake_sleep))


class TestSession:
    async def test_process_reports_progress_per_batch(self, session, make_images):
        session.add_images(make_images(5))
        percentages: list[int] = []
        session.subscribe(
            lambda state, event: isinstance(event, BatchCompleted)
            and percentages.append(state.upload_progress.percentage)
        )

        outcomes = await session.process()

        assert len(outcomes) == 5
        assert percentages == [40, 80, 100]
        assert {img.status for img in session.state.images} == {"completed"}
        assert session.state.upload_progress is None

    async def test_failed_image_recorded_on_record(self, session, fake_remote, make_images):
        session.add_images(make_images(3))
        fake_remote.upload_failures["img-1.png"] = ALWAYS

        await session.process()

        statuses = {img.id: img.status for img in session.state.images}
        assert statuses == {"id-0": "completed", "id-1": "error", "id-2": "completed"}
        assert session.state.get_image("id-1").error_reason == "upload rejected: img-1.png"

    async def test_process_only_pending(self, session, fake_remote, make_images):
        session.add_images(make_images(2))
        await session.process()
        calls = len(fake_remote.upload_calls)

        assert await session.process() == []
        assert len(fake_remote.upload_calls) == calls

    async def test_process_selected_ids(self, session, make_images):
        session.add_images(make_images(3))
        await session.process(["id-2"])
        assert [img.status for img in session.state.images] == ["pending", "pending", "completed"]

    async def test_run_level_failure_marks_remaining(self, session, make_images, monkeypatch):
        session.add_images(make_images(2))

        async def broken_iter_groups(images):
            raise RuntimeError("scheduler crashed")
            yield  # pragma: no cover

        monkeypatch.setattr(
            session._runner,
            "scheduler",
            lambda batch_size=None: SimpleNamespace(iter_groups=broken_iter_groups),
        )

        assert await session.process() == []
        assert {img.status for img in session.state.images} == {"error"}
        assert session.state.upload_progress is None

    async def test_cancelled_run_leaves_no_record_processing(
        self, session, fake_remote, make_images
    ):
        images = session.add_images(make_images(4))
        for img in images:
            fake_remote.delays[img.source] = 5.0

        run = asyncio.create_task(session.process())
        await asyncio.sleep(0.05)
        run.cancel()
        with pytest.raises(asyncio.CancelledError):
            await run

        assert [img.status for img in session.state.images] == ["error"] * 4
        assert {img.error_reason for img in session.state.images} == {"Upload cancelled"}
        assert session.state.upload_progress is None
        assert await session.process() == []

    async def test_search_uses_only_completed(self, session, fake_remote, make_images):
        session.add_images(make_images(3))
        fake_remote.upload_failures["img-0.png"] = ALWAYS
        await session.process()
        fake_remote.rankings = {"id-1": [SearchResult("id-2", 0.7), SearchResult("id-1", 0.3)]}

        results = await session.search("invoice")

        assert [r.image_id for r in results] == ["id-2", "id-1"]
        assert fake_remote.search_calls == [("invoice", ["id-1", "id-2"])]
        assert session.state.search.query == "invoice"
        assert session.state.search.is_searching is False

    async def test_search_without_completed_images(self, session, fake_remote, make_images):
        session.add_images(make_images(2))

        assert await session.search("anything") == []
        assert fake_remote.search_calls == []
        assert session.state.search.last_search_time is not None

    async def test_search_failure_is_recorded(self, session, make_images, monkeypatch):
        session.add_images(make_images(1))
        await session.process()

        async def explode(*args, **kwargs):
            raise RuntimeError("runner down")

        monkeypatch.setattr(session._runner, "run_search", explode)

        assert await session.search("q") == []
        assert session.state.search.results == ()
        assert session.state.search.is_searching is False

    async def test_unsubscribe(self, session, make_images):
        seen = []
        unsubscribe = session.subscribe(lambda state, event: seen.append(event))
        session.add_images(make_images(1))
        unsubscribe()
        session.clear_search()
        assert len(seen) == 1
