from __future__ import annotations

from datetime import datetime
from functools import lru_cache
import logging
from os import getenv
from typing import Any, Literal, Optional
from uuid import UUID

from fastapi import Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from clips.config import LifecycleConfig
from clips.errors import ClipError, InvalidRequest
from clips.lifecycle import ClipLifecycleManager
from db.session import SessionLocal
from events.publisher import ClipEventPublisher, ReconnectPolicy
from storage.s3 import get_object_store

logger = logging.getLogger(__name__)

SHA256_PATTERN = r"^[a-fA-F0-9]{64}$"

app = FastAPI(title="Venue Clips API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        origin.strip()
        for origin in getenv("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
        if origin.strip()
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_body(code: str, message: str) -> dict:
    return {"success": False, "error": {"code": code, "message": message}}


@app.exception_handler(ClipError)
def _clip_error_handler(request: Request, exc: ClipError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc)
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.code, exc.message))


@app.exception_handler(RequestValidationError)
def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    body = _error_body("validation_error", "Request validation failed")
    body["error"]["details"] = jsonable_encoder(exc.errors())
    return JSONResponse(status_code=400, content=body)


@app.exception_handler(Exception)
def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("%s %s failed", request.method, request.url.path)
    return JSONResponse(status_code=500, content=_error_body("internal_error", "Internal server error"))


@lru_cache(maxsize=1)
def _event_publisher() -> ClipEventPublisher | None:
    if getenv("CLIP_EVENTS_ENABLED", "1").lower() not in {"1", "true", "yes"}:
        return None
    # Single attempt per publish: backoff sleeps would run on the request thread.
    return ClipEventPublisher(policy=ReconnectPolicy(max_attempts=1))


def get_lifecycle() -> ClipLifecycleManager:
    return ClipLifecycleManager(
        SessionLocal,
        get_object_store(),
        config=LifecycleConfig.from_env(),
        events=_event_publisher(),
    )


class CreateClipRequest(BaseModel):
    venue_id: UUID
    captured_at: datetime
    sha256: str = Field(pattern=SHA256_PATTERN)
    duration_sec: int | None = Field(default=None, ge=0)
    meta: dict[str, Any] | None = Field(default=None)


class FinalizeUploadRequest(BaseModel):
    size_bytes: int = Field(ge=0)
    sha256: str = Field(pattern=SHA256_PATTERN)
    etag: str | None = Field(default=None, min_length=1)


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/videos/metadata/client/{client_id}/venue/{venue_id}", status_code=201)
def create_video_metadata(
    client_id: UUID,
    venue_id: UUID,
    req: CreateClipRequest,
    manager: ClipLifecycleManager = Depends(get_lifecycle),
) -> dict:
    if req.venue_id != venue_id:
        raise InvalidRequest("venue_mismatch", "Body venue_id does not match the URL venue")
    logger.info("new video metadata: client=%s venue=%s", client_id, venue_id)
    result = manager.create_clip(
        client_id=client_id,
        venue_id=venue_id,
        captured_at=req.captured_at,
        duration_sec=req.duration_sec,
        meta=req.meta,
    )
    return jsonable_encoder(result)


@app.post("/videos/{video_id}/uploaded")
def finalize_video_upload(
    video_id: str,
    req: FinalizeUploadRequest,
    manager: ClipLifecycleManager = Depends(get_lifecycle),
) -> dict:
    result = manager.finalize_upload(
        video_id,
        size_bytes=req.size_bytes,
        sha256=req.sha256,
        etag=req.etag,
    )
    return jsonable_encoder(result)


@app.get("/videos/list")
def list_videos(
    venue_id: UUID = Query(..., alias="venueId"),
    client_id: Optional[UUID] = Query(None, alias="clientId"),
    limit: int = Query(50, ge=1, le=100),
    token: Optional[str] = Query(None),
    include_signed_url: bool = Query(False, alias="includeSignedUrl"),
    ttl: int = Query(3600, ge=60, le=86400),
    manager: ClipLifecycleManager = Depends(get_lifecycle),
) -> JSONResponse:
    result = manager.list_clips(
        venue_id,
        limit=limit,
        token=token,
        include_signed_url=include_signed_url,
        ttl=ttl,
        client_id=client_id,
    )
    # Short cache for list metadata; never long enough to outlive signed URLs.
    return JSONResponse(
        content=jsonable_encoder(result),
        headers={"Cache-Control": "private, max-age=15"},
    )


@app.get("/videos/sign")
def sign_video_url(
    path: str = Query(""),
    kind: Literal["preview", "download"] = Query("preview"),
    ttl: int = Query(3600),
    manager: ClipLifecycleManager = Depends(get_lifecycle),
) -> JSONResponse:
    result = manager.sign_url(path, kind=kind, ttl=ttl)
    return JSONResponse(content=result, headers={"Cache-Control": "private, max-age=5"})


@app.get("/videos/reconcile")
def reconcile_videos(
    venue_id: UUID = Query(..., alias="venueId"),
    max_keys: int = Query(1000, ge=1, le=10000, alias="maxKeys"),
    manager: ClipLifecycleManager = Depends(get_lifecycle),
) -> dict:
    return jsonable_encoder(manager.reconcile_venue(venue_id, max_keys=max_keys))


@app.get("/videos-clips")
def get_clips_by_venue(
    venue_id: UUID = Query(..., alias="venueId"),
    manager: ClipLifecycleManager = Depends(get_lifecycle),
) -> dict:
    return jsonable_encoder(manager.clips_by_venue(venue_id))
