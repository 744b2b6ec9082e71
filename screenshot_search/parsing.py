"""Recovery of structured fields from model responses that are not clean JSON.

The model is asked for strict JSON but occasionally wraps it in prose or
code fences, or truncates it. Analysis falls back to field-level extraction
and finally to the raw text; search falls back to an empty ranking.
"""

from __future__ import annotations

import json
import logging
import math
import re
from typing import Any

from screenshot_search.pipeline.types import AnalysisResult, SearchResult

logger = logging.getLogger(__name__)

_GREEDY_OBJECT = re.compile(r"\{[\s\S]*\}")
_FIRST_OBJECT = re.compile(r"\{[\s\S]*?\}")
_OCR_FIELD = re.compile(r'"ocr_text"\s*:\s*"((?:[^"\\]|\\.)*)"')
_DESCRIPTION_FIELD = re.compile(r'"image_description"\s*:\s*"((?:[^"\\]|\\.)*)"')


def _loads_object(text: str) -> dict[str, Any] | None:
    try:
        obj = json.loads(text)
    except ValueError:
        return None
    return obj if isinstance(obj, dict) else None


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Return the first JSON object found in ``text``, or None."""
    obj = _loads_object(text)
    if obj is not None:
        return obj
    for pattern in (_GREEDY_OBJECT, _FIRST_OBJECT):
        m = pattern.search(text)
        if m:
            obj = _loads_object(m.group(0))
            if obj is not None:
                return obj
    return None


def _unescape(value: str) -> str:
    try:
        return str(json.loads(f'"{value}"'))
    except ValueError:
        return value


def _text_between(text: str, start: str, end: str) -> str | None:
    lowered = text.lower()
    s = lowered.find(start.lower())
    e = lowered.find(end.lower())
    if s == -1 or e == -1 or s >= e:
        return None
    return re.sub(r'[":]', "", text[s + len(start) : e]).strip(" \t\n,{}")


def _text_after(text: str, marker: str) -> str | None:
    i = text.lower().find(marker.lower())
    if i == -1:
        return None
    return re.sub(r'[":]', "", text[i + len(marker) :]).strip(" \t\n,{}")


def parse_analysis_response(text: str) -> AnalysisResult | None:
    """Parse an image-analysis response.

    Returns None only when there is no usable content at all.
    """
    if not text or not text.strip():
        return None

    obj = extract_json_object(text)
    if obj is not None and ("ocr_text" in obj or "image_description" in obj):
        return AnalysisResult(
            ocr_text=str(obj.get("ocr_text") or ""),
            description=str(obj.get("image_description") or ""),
        )

    logger.warning("Failed to parse analysis JSON; falling back to field extraction")

    m = _OCR_FIELD.search(text)
    if m:
        ocr_text = _unescape(m.group(1))
    else:
        ocr_text = _text_between(text, "ocr_text", "image_description") or ""

    m = _DESCRIPTION_FIELD.search(text)
    if m:
        description = _unescape(m.group(1))
    else:
        description = _text_after(text, "image_description") or text.strip()

    return AnalysisResult(ocr_text=ocr_text, description=description)


def _coerce_score(raw: Any) -> float:
    try:
        score = float(raw)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(score):
        return 0.0
    return min(max(score, 0.0), 1.0)


def normalize_similarities(raw: Any) -> list[SearchResult]:
    """Turn a ``similarities`` payload into SearchResults, dropping malformed entries."""
    if not isinstance(raw, list):
        return []
    out: list[SearchResult] = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        image_id = entry.get("image_id")
        if not isinstance(image_id, str) or not image_id:
            continue
        reasoning = entry.get("reasoning")
        out.append(
            SearchResult(
                image_id=image_id,
                score=_coerce_score(entry.get("score")),
                reasoning=str(reasoning) if reasoning is not None else None,
            )
        )
    return out


def parse_search_response(text: str) -> list[SearchResult]:
    """Parse a ranking response; anything unparseable yields an empty list."""
    obj = extract_json_object(text or "")
    if obj is None:
        logger.warning("No valid JSON found in search response, returning empty results")
        return []
    return normalize_similarities(obj.get("similarities"))
