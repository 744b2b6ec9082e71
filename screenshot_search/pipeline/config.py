from __future__ import annotations

import os
from dataclasses import dataclass

from screenshot_search.config import (
    INTER_GROUP_DELAY_SECONDS,
    MAX_RETRIES,
    RETRY_BASE_SECONDS,
    SEARCH_BATCH_SIZE,
    UPLOAD_BATCH_SIZE,
)


def _get_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None:
        return default
    return int(v)


def _get_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None:
        return default
    return float(v)


@dataclass(frozen=True)
class PipelineConfig:
    # Upload path
    upload_batch_size: int = UPLOAD_BATCH_SIZE
    inter_group_delay: float = INTER_GROUP_DELAY_SECONDS

    # Search path
    search_batch_size: int = SEARCH_BATCH_SIZE

    # Retries (shared by upload, analyze and search calls)
    max_retries: int = MAX_RETRIES
    retry_base_seconds: float = RETRY_BASE_SECONDS

    @classmethod
    def from_env(cls) -> PipelineConfig:
        return cls(
            upload_batch_size=_get_int("SCREENSHOT_UPLOAD_BATCH_SIZE", UPLOAD_BATCH_SIZE),
            inter_group_delay=_get_float(
                "SCREENSHOT_INTER_GROUP_DELAY_SECONDS", INTER_GROUP_DELAY_SECONDS
            ),
            search_batch_size=_get_int("SCREENSHOT_SEARCH_BATCH_SIZE", SEARCH_BATCH_SIZE),
            max_retries=_get_int("SCREENSHOT_MAX_RETRIES", MAX_RETRIES),
            retry_base_seconds=_get_float("SCREENSHOT_RETRY_BASE_SECONDS", RETRY_BASE_SECONDS),
        )

    def validate(self) -> None:
        if self.upload_batch_size < 1:
            raise ValueError("SCREENSHOT_UPLOAD_BATCH_SIZE must be >= 1")
        if self.search_batch_size < 1:
            raise ValueError("SCREENSHOT_SEARCH_BATCH_SIZE must be >= 1")
        if self.max_retries < 0:
            raise ValueError("SCREENSHOT_MAX_RETRIES must be >= 0")
        if self.retry_base_seconds < 0:
            raise ValueError("SCREENSHOT_RETRY_BASE_SECONDS must be >= 0")
        if self.inter_group_delay < 0:
            raise ValueError("SCREENSHOT_INTER_GROUP_DELAY_SECONDS must be >= 0")
