"""Pydantic request/response schemas for the screenshot search API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from screenshot_search.pipeline.types import ImageRecord, ProgressRecord, SearchResult

# -- Single-shot model calls --------------------------------------------------


class UploadFileResponse(BaseModel):
    fileUri: str


class AnalyzeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_uri: str = Field(..., min_length=1, alias="fileUri")
    mime_type: str = Field(..., min_length=1, alias="mimeType")


class AnalyzeResponse(BaseModel):
    ocr_text: str
    image_description: str


class SearchImage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1)
    ocr_text: str = ""
    image_description: str = Field("", alias="description")


class SearchImagesRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=2_000)
    images: list[SearchImage]


class Similarity(BaseModel):
    image_id: str
    score: float
    reasoning: str | None = None

    @classmethod
    def from_result(cls, r: SearchResult) -> Similarity:
        return cls(image_id=r.image_id, score=r.score, reasoning=r.reasoning)


class SimilaritiesResponse(BaseModel):
    similarities: list[Similarity]


class EnvCheckResponse(BaseModel):
    has_api_key: bool
    model: str


# -- Session ------------------------------------------------------------------


class ImageSummary(BaseModel):
    id: str
    filename: str
    mime_type: str
    status: str  # pending|processing|completed|error
    ocr_text: str
    image_description: str
    remote_file_ref: str | None = None
    error_message: str | None = None
    uploaded_at: datetime

    @classmethod
    def from_record(cls, r: ImageRecord) -> ImageSummary:
        return cls(
            id=r.id,
            filename=r.filename,
            mime_type=r.mime_type,
            status=r.status,
            ocr_text=r.ocr_text,
            image_description=r.description,
            remote_file_ref=r.remote_file_ref,
            error_message=r.error_reason,
            uploaded_at=r.uploaded_at,
        )


class ImageListResponse(BaseModel):
    images: list[ImageSummary]
    total: int


class Progress(BaseModel):
    total: int
    completed: int
    current_file: str
    percentage: int

    @classmethod
    def from_record(cls, p: ProgressRecord) -> Progress:
        return cls(
            total=p.total,
            completed=p.completed,
            current_file=p.current_label,
            percentage=p.percentage,
        )


class ProgressResponse(BaseModel):
    upload_progress: Progress | None = None
    counts: dict[str, int]


class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=2_000, description="Search query text")
    batch_size: int | None = Field(None, ge=1, le=100, description="Images per ranking call")


class SearchResponse(BaseModel):
    query: str
    similarities: list[Similarity]
    searched_images: int
    last_search_time: datetime | None = None


# -- Health -------------------------------------------------------------------


class HealthResponse(BaseModel):
    status: str
    error: str | None = None
