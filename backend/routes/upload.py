"""Upload REST API: signed write URLs, proxied uploads, object status."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from services.gcs import (
    DEFAULT_CONTENT_TYPE,
    KEY_PREFIX,
    generate_signed_url,
    generate_storage_key,
    get_bucket_name,
    get_upload_url_expiration,
    head_blob,
    upload_blob,
)

router = APIRouter(prefix="/upload", tags=["upload"])
logger = logging.getLogger(__name__)


class PresignedUrlRequest(BaseModel):
    file_name: str | None = None
    file_type: str = DEFAULT_CONTENT_TYPE
    storage_key: str | None = None


class PresignedUrlResponse(BaseModel):
    presigned_url: str
    storage_key: str
    bucket: str
    expires_in: int


class DirectUploadResponse(BaseModel):
    storage_key: str
    bucket: str
    file_size: int
    upload_seconds: float


class UploadStatusResponse(BaseModel):
    exists: bool
    file_size: int | None = None
    last_modified: datetime | None = None
    content_type: str | None = None


def _validate_key(storage_key: str) -> None:
    if not storage_key.startswith(f"{KEY_PREFIX}/") or ".." in storage_key:
        raise HTTPException(status_code=400, detail=f"storage_key must live under {KEY_PREFIX}/")


@router.post("/presigned-url", response_model=PresignedUrlResponse)
def create_presigned_url(body: PresignedUrlRequest) -> PresignedUrlResponse:
    """Issue a V4 signed PUT URL scoped to one object key."""
    storage_key = body.storage_key or generate_storage_key()
    _validate_key(storage_key)
    bucket = get_bucket_name()
    expires_in = get_upload_url_expiration()
    logger.info(
        "[upload] POST /api/upload/presigned-url file_name=%s file_type=%s key=%s",
        body.file_name,
        body.file_type,
        storage_key,
    )
    try:
        url = generate_signed_url(
            storage_key,
            bucket_name=bucket,
            expiration_seconds=expires_in,
            method="PUT",
            content_type=body.file_type,
        )
    except Exception as e:  # noqa: BLE001
        logger.error("[upload] Signed URL generation failed for %s: %s", storage_key, e, exc_info=True)
        raise HTTPException(status_code=502, detail="Could not issue write credential") from e
    return PresignedUrlResponse(presigned_url=url, storage_key=storage_key, bucket=bucket, expires_in=expires_in)


@router.post("/direct", response_model=DirectUploadResponse)
async def direct_upload(request: Request) -> DirectUploadResponse:
    """Write the raw request body to storage with the server's credentials. The server picks the key."""
    data = await request.body()
    if not data:
        raise HTTPException(status_code=400, detail="Request body is empty")
    content_type = request.headers.get("content-type") or DEFAULT_CONTENT_TYPE
    storage_key = generate_storage_key()
    bucket = get_bucket_name()
    logger.info("[upload] POST /api/upload/direct bytes=%d type=%s key=%s", len(data), content_type, storage_key)

    started = time.monotonic()
    try:
        await asyncio.to_thread(upload_blob, storage_key, data, bucket_name=bucket, content_type=content_type)
    except Exception as e:  # noqa: BLE001
        logger.error("[upload] Direct upload failed for %s: %s", storage_key, e, exc_info=True)
        raise HTTPException(status_code=502, detail="Storage write failed") from e
    elapsed = time.monotonic() - started
    return DirectUploadResponse(
        storage_key=storage_key,
        bucket=bucket,
        file_size=len(data),
        upload_seconds=round(elapsed, 2),
    )


@router.get("/status/{storage_key:path}", response_model=UploadStatusResponse)
def upload_status(storage_key: str) -> UploadStatusResponse:
    """Check whether an object exists. A missing object is exists=False, not an error."""
    try:
        info = head_blob(storage_key)
    except Exception as e:  # noqa: BLE001
        logger.error("[upload] Status check failed for %s: %s", storage_key, e)
        raise HTTPException(status_code=502, detail="Storage status check failed") from e
    if not info.exists:
        logger.info("[upload] Object not found: %s", storage_key)
    return UploadStatusResponse(
        exists=info.exists,
        file_size=info.size,
        last_modified=info.last_modified,
        content_type=info.content_type,
    )
