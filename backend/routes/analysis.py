"""Analysis REST API: start and check transcription / face / segment jobs."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, HTTPException
from google.api_core import exceptions as google_exceptions
from pydantic import BaseModel

from models.analysis import JobKind
from services.dispatcher import JobDispatcher
from services.providers import JobProvider, google_providers, status_to_dict
from services.settings import Settings

router = APIRouter(prefix="/analysis", tags=["analysis"])
logger = logging.getLogger(__name__)

_providers: dict[JobKind, JobProvider] | None = None


def get_providers() -> dict[JobKind, JobProvider]:
    """Google providers, created on first use so importing the app needs no credentials."""
    global _providers
    if _providers is None:
        _providers = google_providers(language=Settings.from_env().transcribe_language)
    return _providers


class AnalysisStartRequest(BaseModel):
    storage_key: str
    bucket: str | None = None


class AnalysisStartResponse(BaseModel):
    storage_key: str
    media_location: str
    jobs: dict[str, dict[str, Any]]


class JobStartRequest(BaseModel):
    media_location: str
    language_hint: str | None = None


class JobStartResponse(BaseModel):
    job_handle: str


class StatusAllRequest(BaseModel):
    jobs: dict[str, str]


def _parse_kind(kind: str) -> JobKind:
    try:
        return JobKind(kind.lower())
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail=f"kind must be one of {[k.value for k in JobKind]}",
        ) from None


@router.post("/start", response_model=AnalysisStartResponse)
async def start_analysis(body: AnalysisStartRequest) -> AnalysisStartResponse:
    """Start all three jobs for one stored recording. A job that fails to start is reported, not raised."""
    if not body.storage_key.strip():
        raise HTTPException(status_code=400, detail="storage_key is required")
    dispatcher = JobDispatcher(
        get_providers(),
        language_hint=Settings.from_env().transcribe_language,
        bucket_name=body.bucket,
    )
    logger.info("[analysis] POST /api/analysis/start key=%s bucket=%s", body.storage_key, body.bucket)
    jobs = await dispatcher.start(body.storage_key)
    return AnalysisStartResponse(
        storage_key=body.storage_key,
        media_location=dispatcher.media_location(body.storage_key),
        jobs=jobs.to_dict(),
    )


@router.post("/jobs/{kind}", response_model=JobStartResponse)
async def start_job(kind: str, body: JobStartRequest) -> JobStartResponse:
    job_kind = _parse_kind(kind)
    provider = get_providers()[job_kind]
    try:
        handle = await provider.start(body.media_location, language_hint=body.language_hint)
    except Exception as e:  # noqa: BLE001
        logger.error("[analysis] %s job failed to start for %s: %s", job_kind.value, body.media_location, e, exc_info=True)
        raise HTTPException(status_code=502, detail=f"{job_kind.value} job could not be started: {e}") from e
    return JobStartResponse(job_handle=handle)


@router.get("/status/{kind}/{job_handle:path}")
async def job_status(kind: str, job_handle: str) -> dict[str, Any]:
    job_kind = _parse_kind(kind)
    provider = get_providers()[job_kind]
    try:
        status = await provider.get_status(job_handle)
    except google_exceptions.ClientError as e:
        logger.error("[analysis] %s status query rejected for %s: %s", job_kind.value, job_handle, e)
        raise HTTPException(status_code=e.code or 400, detail=f"{job_kind.value} status query rejected: {e.message}") from e
    except Exception as e:  # noqa: BLE001
        logger.error("[analysis] %s status query failed for %s: %s", job_kind.value, job_handle, e)
        raise HTTPException(status_code=502, detail=f"{job_kind.value} status query failed") from e
    logger.info("[analysis] %s %s -> %s", job_kind.value, job_handle, status.status.value)
    return status_to_dict(status)


@router.post("/status-all")
async def status_all(body: StatusAllRequest) -> dict[str, dict[str, Any]]:
    """Check several jobs in one call. A failing query is reported per kind with status "error"."""
    requested = [(_parse_kind(kind), handle) for kind, handle in body.jobs.items()]
    providers = get_providers()
    outcomes = await asyncio.gather(
        *(providers[kind].get_status(handle) for kind, handle in requested),
        return_exceptions=True,
    )
    results: dict[str, dict[str, Any]] = {}
    for (kind, handle), outcome in zip(requested, outcomes):
        if isinstance(outcome, Exception):
            logger.warning("[analysis] %s status query failed for %s: %s", kind.value, handle, outcome)
            results[kind.value] = {"status": "error", "error": str(outcome)}
        elif isinstance(outcome, BaseException):
            raise outcome
        else:
            results[kind.value] = status_to_dict(outcome)
    return results
