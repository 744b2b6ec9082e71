"""FastAPI entry point for the screenshot search service.

Endpoints:
- POST /api/upload-file    — Upload one image to the Gemini Files API
- POST /api/analyze-image  — OCR + description for an uploaded image
- POST /api/search-images  — Rank a caller-supplied image list (single call)
- GET  /api/test-env       — Credential presence check
- POST /v1/images          — Add screenshots to the session; analyzed in the background
- GET  /v1/images          — List session images with their status
- GET  /v1/images/{id}     — One session image
- GET  /v1/progress        — Upload progress and status counts
- POST /v1/search          — Batched, partitioned search over completed images
- GET  /liveness           — Health check
- GET  /readiness          — Gemini reachability check
"""

from __future__ import annotations

import logging
import mimetypes
from collections import Counter
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from functools import lru_cache
from pathlib import PurePath
from typing import Annotated

from fastapi import BackgroundTasks, Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from screenshot_search.config import (
    CORS_ALLOW_CREDENTIALS,
    CORS_ALLOW_HEADERS,
    CORS_ALLOW_METHODS,
    CORS_ALLOW_ORIGINS,
    GEMINI_API_KEY,
    GEMINI_MODEL,
    IMAGE_EXTENSIONS,
    IS_CLOUD_RUN,
    MAX_BODY_BYTES,
)
from screenshot_search.gemini import GeminiRemoteModel, check_gemini_service
from screenshot_search.logging_config import (
    bind_request_id,
    generate_request_id,
    setup_logging,
)
from screenshot_search.models import (
    AnalyzeRequest,
    AnalyzeResponse,
    EnvCheckResponse,
    HealthResponse,
    ImageListResponse,
    ImageSummary,
    Progress,
    ProgressResponse,
    SearchImagesRequest,
    SearchRequest,
    SearchResponse,
    SimilaritiesResponse,
    Similarity,
    UploadFileResponse,
)
from screenshot_search.pipeline.config import PipelineConfig
from screenshot_search.pipeline.runner import PipelineRunner
from screenshot_search.pipeline.types import ImageRecord, RemoteModel
from screenshot_search.session import Session

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_remote() -> RemoteModel:
    return GeminiRemoteModel()


@lru_cache(maxsize=1)
def get_session() -> Session:
    cfg = PipelineConfig.from_env()
    cfg.validate()
    return Session(runner=PipelineRunner(remote=get_remote(), cfg=cfg))


def require_api_key_on_cloud_run() -> None:
    if IS_CLOUD_RUN and not GEMINI_API_KEY:
        raise RuntimeError("GEMINI_API_KEY must be set when running on Cloud Run")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: configure logging and fail fast on missing credentials."""
    setup_logging()
    require_api_key_on_cloud_run()
    logger.info("Screenshot search service started")
    yield
    logger.info("Screenshot search service stopped")


app = FastAPI(
    title="Screenshot Search API",
    version="0.1.0",
    lifespan=lifespan,
)

# -- Rate limiting ------------------------------------------------------------

limiter = Limiter(key_func=get_remote_address, default_limits=["120/minute"])
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(status_code=429, content={"detail": "Rate limit exceeded"})


if CORS_ALLOW_CREDENTIALS and "*" in CORS_ALLOW_ORIGINS:
    raise RuntimeError("Invalid CORS config: wildcard origin cannot be combined with credentials=true")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=CORS_ALLOW_CREDENTIALS,
    allow_methods=CORS_ALLOW_METHODS,
    allow_headers=CORS_ALLOW_HEADERS,
)


# -- Body size limit ----------------------------------------------------------


@app.middleware("http")
async def body_size_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Reject requests with bodies exceeding the size limit."""
    content_length = request.headers.get("content-length")
    if content_length is not None and int(content_length) > MAX_BODY_BYTES:
        return JSONResponse(status_code=413, content={"detail": "Request body too large"})
    return await call_next(request)


# -- Request ID middleware ----------------------------------------------------


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Attach a unique request ID for trace correlation."""
    request_id = request.headers.get("x-request-id") or generate_request_id()
    request.state.request_id = request_id
    bind_request_id(request_id)
    response = await call_next(request)
    response.headers["x-request-id"] = request_id
    return response


def _image_mime_type(upload: UploadFile) -> str | None:
    """Return the image MIME type of an upload, or None if it is not an image."""
    name = upload.filename or ""
    mime = upload.content_type
    if not mime or mime == "application/octet-stream":
        mime = mimetypes.guess_type(name)[0]
    if mime and mime.startswith("image/"):
        return mime
    if PurePath(name).suffix.lower() in IMAGE_EXTENSIONS:
        return mimetypes.guess_type(name)[0] or "image/png"
    return None


# -- Health -------------------------------------------------------------------


@app.get("/liveness", response_model=HealthResponse)
async def liveness() -> HealthResponse:
    return HealthResponse(status="ok")


@app.get("/readiness", response_model=HealthResponse)
async def readiness() -> HealthResponse:
    if not GEMINI_API_KEY:
        raise HTTPException(status_code=503, detail="Gemini API key not configured")
    if not await check_gemini_service():
        return HealthResponse(status="degraded", error="Gemini API unavailable")
    return HealthResponse(status="ok")


@app.get("/api/test-env", response_model=EnvCheckResponse)
async def env_check() -> EnvCheckResponse:
    return EnvCheckResponse(has_api_key=bool(GEMINI_API_KEY), model=GEMINI_MODEL)


# -- Single-shot model calls --------------------------------------------------


@app.post("/api/upload-file", response_model=UploadFileResponse)
async def upload_file(
    remote: Annotated[RemoteModel, Depends(get_remote)],
    file: UploadFile = File(...),
) -> UploadFileResponse:
    mime = _image_mime_type(file)
    if mime is None:
        raise HTTPException(status_code=400, detail="File is not an image")

    data = await file.read()
    logger.info("Uploading file name=%s size=%d type=%s", file.filename, len(data), mime)
    try:
        file_uri = await remote.upload_file(data, mime)
    except Exception as e:
        logger.exception("Error uploading file")
        raise HTTPException(status_code=500, detail="Failed to upload file") from e
    return UploadFileResponse(fileUri=file_uri)


@app.post("/api/analyze-image", response_model=AnalyzeResponse)
async def analyze_image(
    body: AnalyzeRequest,
    remote: Annotated[RemoteModel, Depends(get_remote)],
) -> AnalyzeResponse:
    try:
        result = await remote.analyze(body.file_uri, body.mime_type)
    except Exception as e:
        logger.exception("Error analyzing image")
        raise HTTPException(status_code=500, detail="Failed to analyze image") from e
    return AnalyzeResponse(ocr_text=result.ocr_text, image_description=result.description)


@app.post("/api/search-images", response_model=SimilaritiesResponse)
@limiter.limit("30/minute")
async def search_images(
    request: Request,
    body: SearchImagesRequest,
    remote: Annotated[RemoteModel, Depends(get_remote)],
) -> SimilaritiesResponse:
    query = body.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Query must not be blank")
    if not body.images:
        return SimilaritiesResponse(similarities=[])

    records = [
        ImageRecord(
            id=img.id,
            source=None,
            filename=img.id,
            mime_type="",
            status="completed",
            ocr_text=img.ocr_text,
            description=img.image_description,
        )
        for img in body.images
    ]
    try:
        results = await remote.search(query, records)
    except Exception as e:
        logger.exception("Error searching images")
        raise HTTPException(status_code=500, detail="Failed to search images") from e
    return SimilaritiesResponse(similarities=[Similarity.from_result(r) for r in results])


# -- Session ------------------------------------------------------------------


@app.post("/v1/images", response_model=ImageListResponse, status_code=202)
async def add_images(
    background_tasks: BackgroundTasks,
    session: Annotated[Session, Depends(get_session)],
    files: list[UploadFile] = File(...),
) -> ImageListResponse:
    """Register screenshots as pending and analyze them after responding."""
    records: list[ImageRecord] = []
    for f in files:
        mime = _image_mime_type(f)
        if mime is None:
            logger.info("Skipping non-image upload: %s", f.filename)
            continue
        records.append(
            ImageRecord.new(source=await f.read(), filename=f.filename or "image", mime_type=mime)
        )

    if not records:
        raise HTTPException(status_code=400, detail="No image files provided")

    added = session.add_images(records)
    background_tasks.add_task(session.process, [r.id for r in added])
    return ImageListResponse(
        images=[ImageSummary.from_record(r) for r in added],
        total=len(added),
    )


@app.get("/v1/images", response_model=ImageListResponse)
async def list_images(
    session: Annotated[Session, Depends(get_session)],
    status: str | None = None,
) -> ImageListResponse:
    images = [
        img for img in session.state.images if status is None or img.status == status
    ]
    return ImageListResponse(
        images=[ImageSummary.from_record(r) for r in images],
        total=len(images),
    )


@app.get("/v1/images/{image_id}", response_model=ImageSummary)
async def get_image(
    image_id: str,
    session: Annotated[Session, Depends(get_session)],
) -> ImageSummary:
    record = session.state.get_image(image_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Image not found")
    return ImageSummary.from_record(record)


@app.get("/v1/progress", response_model=ProgressResponse)
async def progress(session: Annotated[Session, Depends(get_session)]) -> ProgressResponse:
    state = session.state
    counts = Counter(img.status for img in state.images)
    p = state.upload_progress
    return ProgressResponse(
        upload_progress=Progress.from_record(p) if p is not None else None,
        counts={s: counts.get(s, 0) for s in ("pending", "processing", "completed", "error")},
    )


@app.post("/v1/search", response_model=SearchResponse)
@limiter.limit("30/minute")
async def search(
    request: Request,
    body: SearchRequest,
    session: Annotated[Session, Depends(get_session)],
) -> SearchResponse:
    """Partitioned search over the session's completed images."""
    query = body.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Query must not be blank")

    searched = len(session.state.completed_images())
    results = await session.search(query, body.batch_size)
    return SearchResponse(
        query=query,
        similarities=[Similarity.from_result(r) for r in results],
        searched_images=searched,
        last_search_time=session.state.search.last_search_time,
    )
