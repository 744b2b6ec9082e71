"""Gemini collaborator: file upload, image analysis and relevance ranking.

Each call is single-shot; retries and batching live in the pipeline.
"""

from __future__ import annotations

import io
import logging
from collections.abc import Sequence
from functools import lru_cache
from pathlib import Path
from typing import Any

from google import genai
from google.genai import types

from screenshot_search.config import GEMINI_API_KEY, GEMINI_MODEL, SEARCH_MIN_SCORE
from screenshot_search.parsing import parse_analysis_response, parse_search_response
from screenshot_search.pipeline.types import AnalysisResult, ImageRecord, SearchResult

logger = logging.getLogger(__name__)

ANALYSIS_SYSTEM_INSTRUCTION = (
    "You are an expert at analyzing screenshots and images. You MUST respond with "
    "valid JSON only. Extract text accurately and provide detailed visual descriptions "
    "that would help someone search for this image later using natural language queries."
)

ANALYSIS_PROMPT = """Analyze this image and provide:
1. All visible text in the image (OCR extraction)
2. A detailed description of what's shown in the image

You MUST respond with ONLY valid JSON in this exact format:
{
  "ocr_text": "All text found in the image, separated by spaces or newlines as appropriate",
  "image_description": "Detailed description of the visual content, objects, people, colors, layout, UI elements, etc."
}

Return ONLY the JSON object, no other text or explanation."""

SEARCH_SYSTEM_INSTRUCTION = (
    "You are an expert at matching natural language queries to image content. "
    "You MUST respond with valid JSON only. Be precise with scoring - only "
    "high-confidence matches should get scores above 0.7."
)


class UploadError(RuntimeError):
    pass


class AnalysisError(RuntimeError):
    pass


class SearchError(RuntimeError):
    pass


@lru_cache(maxsize=1)
def _get_gemini_client() -> genai.Client:
    """Cached Gemini client; the Files API needs an API key."""
    if not GEMINI_API_KEY:
        raise ValueError(
            "GEMINI_API_KEY not set. Set GEMINI_API_KEY (or GOOGLE_AI_API_KEY) to use the Gemini API."
        )
    return genai.Client(api_key=GEMINI_API_KEY)


def build_search_prompt(query: str, images: Sequence[ImageRecord], min_score: float) -> str:
    listing = "\n".join(
        f"ID: {img.id}\nOCR Text: {img.ocr_text}\nDescription: {img.description}\n---"
        for img in images
    )
    return f"""You are a search engine for image content. Given a search query and a list of images with their OCR text and descriptions, rank them by relevance.

Search Query: "{query}"

Images to search:
{listing}

Please analyze which images best match the search query and return a JSON response with similarity scores (0-1, where 1 is perfect match).
Consider both the OCR text content AND the visual description when determining matches.

You MUST respond with ONLY valid JSON in this exact format:
{{
  "similarities": [
    {{
      "image_id": "image_id_here",
      "score": 0.95,
      "reasoning": "Brief explanation of why this matches"
    }}
  ]
}}

Only include images with scores above {min_score}, and sort by score descending.
Return ONLY the JSON object, no other text or explanation."""


def _as_uploadable(source: Any) -> Any:
    if isinstance(source, (bytes, bytearray)):
        return io.BytesIO(bytes(source))
    if isinstance(source, Path):
        return str(source)
    return source


class GeminiRemoteModel:
    """Talks to the Gemini API through the google-genai async client."""

    def __init__(
        self,
        *,
        client: genai.Client | None = None,
        model: str = GEMINI_MODEL,
        min_score: float = SEARCH_MIN_SCORE,
    ) -> None:
        self._client = client
        self._model = model
        self._min_score = min_score

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            self._client = _get_gemini_client()
        return self._client

    async def upload_file(self, source: Any, mime_type: str) -> str:
        """Upload raw image content to the Files API; returns the file URI."""
        try:
            uploaded = await self.client.aio.files.upload(
                file=_as_uploadable(source),
                config=types.UploadFileConfig(mime_type=mime_type),
            )
        except Exception as e:
            raise UploadError(f"Failed to upload file: {e}") from e

        if not uploaded.uri:
            raise UploadError("Failed to upload file: no file URI returned")
        return uploaded.uri

    async def analyze(self, remote_file_ref: str, mime_type: str) -> AnalysisResult:
        """Extract OCR text and a visual description for an uploaded image."""
        try:
            response = await self.client.aio.models.generate_content(
                model=self._model,
                contents=[
                    types.Part.from_uri(file_uri=remote_file_ref, mime_type=mime_type),
                    ANALYSIS_PROMPT,
                ],
                config=types.GenerateContentConfig(
                    system_instruction=ANALYSIS_SYSTEM_INSTRUCTION,
                    response_mime_type="application/json",
                ),
            )
        except Exception as e:
            raise AnalysisError(f"Failed to analyze image: {e}") from e

        result = parse_analysis_response(response.text or "")
        if result is None:
            raise AnalysisError("Failed to analyze image: empty model response")
        return result

    async def search(self, query: str, images: Sequence[ImageRecord]) -> list[SearchResult]:
        """Score ``images`` against ``query``; unparseable output ranks nothing."""
        prompt = build_search_prompt(query, images, self._min_score)
        try:
            response = await self.client.aio.models.generate_content(
                model=self._model,
                contents=prompt,
                config=types.GenerateContentConfig(
                    system_instruction=SEARCH_SYSTEM_INSTRUCTION,
                    response_mime_type="application/json",
                ),
            )
        except Exception as e:
            raise SearchError(f"Search failed: {e}") from e

        return parse_search_response(response.text or "")


async def check_gemini_service() -> bool:
    """Quick health check: verify the Gemini API is reachable."""
    try:
        client = _get_gemini_client()
        await client.aio.models.get(model=GEMINI_MODEL)
        return True
    except Exception:
        logger.warning("Gemini health check failed", exc_info=True)
        return False
