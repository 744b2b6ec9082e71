"""Unit test conftest: an in-memory remote model, no network required."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any

import pytest

from screenshot_search.gemini import AnalysisError, SearchError, UploadError
from screenshot_search.pipeline.types import AnalysisResult, ImageRecord, SearchResult


class FakeRemote:
    """Scriptable stand-in for the Gemini collaborator.

    - ``upload_failures[source]``: number of leading upload failures (large = always)
    - ``analyze_failures[ref]``: same for analysis, keyed by remote file ref
    - ``delays[source]``: seconds the upload takes, to shuffle completion order
    - ``rankings[first_image_id]``: results returned for the partition starting there
    - ``search_failures[first_image_id]``: leading search failures for that partition
    - ``search_delays[first_image_id]``: seconds the ranking call takes
    """

    def __init__(self) -> None:
        self.upload_failures: dict[Any, int] = {}
        self.analyze_failures: dict[str, int] = {}
        self.delays: dict[Any, float] = {}
        self.rankings: dict[str, list[SearchResult]] = {}
        self.search_failures: dict[str, int] = {}
        self.search_delays: dict[str, float] = {}

        self.upload_calls: list[Any] = []
        self.analyze_calls: list[tuple[str, str]] = []
        self.search_calls: list[tuple[str, list[str]]] = []
        self.in_flight_searches = 0
        self.max_in_flight_searches = 0
        self.cancelled_searches: list[str] = []

    async def upload_file(self, source: Any, mime_type: str) -> str:
        self.upload_calls.append(source)
        delay = self.delays.get(source, 0.0)
        if delay:
            await asyncio.sleep(delay)
        if self.upload_failures.get(source, 0) > 0:
            self.upload_failures[source] -= 1
            raise UploadError(f"upload rejected: {source}")
        return f"files/{source}"

    async def analyze(self, remote_file_ref: str, mime_type: str) -> AnalysisResult:
        self.analyze_calls.append((remote_file_ref, mime_type))
        if self.analyze_failures.get(remote_file_ref, 0) > 0:
            self.analyze_failures[remote_file_ref] -= 1
            raise AnalysisError(f"analysis failed: {remote_file_ref}")
        name = remote_file_ref.removeprefix("files/")
        return AnalysisResult(ocr_text=f"text of {name}", description=f"picture of {name}")

    async def search(self, query: str, images: Sequence[ImageRecord]) -> list[SearchResult]:
        key = images[0].id
        self.search_calls.append((query, [img.id for img in images]))
        self.in_flight_searches += 1
        self.max_in_flight_searches = max(self.max_in_flight_searches, self.in_flight_searches)
        try:
            await asyncio.sleep(self.search_delays.get(key, 0.01))
        except asyncio.CancelledError:
            self.cancelled_searches.append(key)
            raise
        finally:
            self.in_flight_searches -= 1
        if self.search_failures.get(key, 0) > 0:
            self.search_failures[key] -= 1
            raise SearchError(f"search failed for partition starting at {key}")
        return list(self.rankings.get(key, []))


@pytest.fixture
def fake_remote() -> FakeRemote:
    return FakeRemote()


class RecordingSleep:
    """Instant replacement for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


@pytest.fixture
def fake_sleep() -> RecordingSleep:
    return RecordingSleep()
