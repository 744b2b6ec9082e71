"""Environment-variable-driven configuration for the screenshot search service.

All config comes from env vars; nothing is read from disk.
"""

from __future__ import annotations

import os


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_csv(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


# -- Gemini -------------------------------------------------------------------
GEMINI_API_KEY: str | None = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_AI_API_KEY")
GEMINI_MODEL: str = os.getenv("SCREENSHOT_SEARCH_MODEL", "gemini-2.5-flash")

# -- Pipeline defaults --------------------------------------------------------
UPLOAD_BATCH_SIZE: int = int(os.getenv("SCREENSHOT_UPLOAD_BATCH_SIZE", "15"))
SEARCH_BATCH_SIZE: int = int(os.getenv("SCREENSHOT_SEARCH_BATCH_SIZE", "10"))
MAX_RETRIES: int = int(os.getenv("SCREENSHOT_MAX_RETRIES", "3"))
RETRY_BASE_SECONDS: float = float(os.getenv("SCREENSHOT_RETRY_BASE_SECONDS", "1.0"))
INTER_GROUP_DELAY_SECONDS: float = float(
    os.getenv("SCREENSHOT_INTER_GROUP_DELAY_SECONDS", "0.1")
)

# -- Search -------------------------------------------------------------------
SEARCH_MIN_SCORE: float = float(os.getenv("SCREENSHOT_MIN_SCORE", "0.1"))

# -- Uploads ------------------------------------------------------------------
IMAGE_EXTENSIONS: frozenset[str] = frozenset(
    {".png", ".jpg", ".jpeg", ".gif", ".bmp", ".webp", ".svg"}
)
MAX_BODY_BYTES: int = int(os.getenv("SCREENSHOT_MAX_BODY_BYTES", str(50 * 1024 * 1024)))


# -- CORS ---------------------------------------------------------------------
CORS_ALLOW_ORIGINS: list[str] = _env_csv(
    "SCREENSHOT_CORS_ALLOW_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
)
CORS_ALLOW_METHODS: list[str] = _env_csv(
    "SCREENSHOT_CORS_ALLOW_METHODS",
    "GET,POST,OPTIONS",
)
CORS_ALLOW_HEADERS: list[str] = _env_csv(
    "SCREENSHOT_CORS_ALLOW_HEADERS",
    "Content-Type,X-Request-Id",
)
CORS_ALLOW_CREDENTIALS: bool = _env_bool("SCREENSHOT_CORS_ALLOW_CREDENTIALS", False)

# -- Server -------------------------------------------------------------------
IS_CLOUD_RUN: bool = bool(os.getenv("K_SERVICE"))
