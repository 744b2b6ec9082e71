"""Shared test fixtures for the screenshot-search test suite."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from screenshot_search.pipeline.types import ImageRecord


@pytest.fixture
def make_images() -> Callable[..., list[ImageRecord]]:
    """Factory for ``n`` pending records with ids ``id-0..`` and sources ``img-0.png..``."""

    def _make(n: int, *, prefix: str = "id") -> list[ImageRecord]:
        return [
            ImageRecord(
                id=f"{prefix}-{i}",
                source=f"img-{i}.png",
                filename=f"img-{i}.png",
                mime_type="image/png",
            )
            for i in range(n)
        ]

    return _make
