from __future__ import annotations

import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal, Protocol

ImageStatus = Literal["pending", "processing", "completed", "error"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "error"})


@dataclass(frozen=True)
class ImageRecord:
    id: str
    source: Any  # path, bytes or file-like; never mutated here
    filename: str
    mime_type: str
    status: ImageStatus = "pending"
    remote_file_ref: str | None = None
    ocr_text: str = ""
    description: str = ""
    error_reason: str | None = None
    uploaded_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def new(cls, *, source: Any, filename: str, mime_type: str) -> ImageRecord:
        return cls(id=str(uuid.uuid4()), source=source, filename=filename, mime_type=mime_type)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class AnalysisResult:
    ocr_text: str
    description: str


@dataclass(frozen=True)
class BatchOutcome:
    """Result of one upload+analyze attempt for a single image."""

    success: bool
    image_id: str
    remote_file_ref: str | None = None
    ocr_text: str | None = None
    description: str | None = None
    error: str | None = None

    @classmethod
    def failed(cls, image_id: str, error: str) -> BatchOutcome:
        return cls(success=False, image_id=image_id, error=error)


@dataclass(frozen=True)
class SearchResult:
    image_id: str
    score: float
    reasoning: str | None = None


@dataclass(frozen=True)
class ProgressRecord:
    total: int
    completed: int
    current_label: str
    percentage: int

    @classmethod
    def compute(cls, *, total: int, completed: int, current_label: str) -> ProgressRecord:
        if total <= 0:
            pct = 0
        else:
            # half-up, not banker's rounding
            pct = int(100 * completed / total + 0.5)
        return cls(
            total=total,
            completed=completed,
            current_label=current_label,
            percentage=min(max(pct, 0), 100),
        )


@dataclass(frozen=True)
class GroupEvent:
    """Emitted once per upload group after all of its images settled."""

    group_index: int
    total_groups: int
    outcomes: tuple[BatchOutcome, ...]


@dataclass(frozen=True)
class PartitionEvent:
    """Emitted once per search partition; empty on partition failure."""

    group_index: int
    total_groups: int
    similarities: tuple[SearchResult, ...]


class RemoteModel(Protocol):
    """Remote multimodal model the pipeline drives."""

    async def upload_file(self, source: Any, mime_type: str) -> str: ...

    async def analyze(self, remote_file_ref: str, mime_type: str) -> AnalysisResult: ...

    async def search(
        self, query: str, images: Sequence[ImageRecord]
    ) -> list[SearchResult]: ...


def partition(items: Sequence[Any], size: int) -> list[list[Any]]:
    """Split into contiguous groups of ``size``; the last group may be smaller."""
    size = max(1, size)
    return [list(items[i : i + size]) for i in range(0, len(items), size)]
