"""Interview REST API: record on the host capture device, then upload and analyze."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from models.errors import InvalidTransitionError
from models.session import PipelinePhase
from routes.analysis import get_providers
from services.backend_client import BackendClient
from services.events_hub import HubListener, events_hub
from services.pipeline import InterviewPipeline, build_pipeline
from services.settings import Settings
from services.store import interviews, prune_finished

router = APIRouter(tags=["interviews"])
logger = logging.getLogger(__name__)

_client: BackendClient | None = None


def get_backend_client(settings: Settings) -> BackendClient:
    global _client
    if _client is None:
        _client = BackendClient(settings.api_base_url, timeout=settings.http_timeout_seconds)
    return _client


async def close_backend_client() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


def create_pipeline(candidate: str | None) -> InterviewPipeline:
    settings = Settings.from_env()
    return build_pipeline(
        settings,
        client=get_backend_client(settings),
        providers=get_providers(),
        candidate=candidate,
    )


class InterviewCreateRequest(BaseModel):
    candidate: str | None = None


class InterviewResponse(BaseModel):
    interview_id: str
    session_id: str | None = None
    candidate: str | None = None
    phase: PipelinePhase
    storage_key: str | None = None
    simulated_upload: bool = False
    duration_seconds: float | None = None
    jobs: dict[str, dict[str, Any]] | None = None
    report: dict[str, Any] | None = None
    error: dict[str, str] | None = None


def _get(interview_id: str) -> InterviewPipeline:
    pipeline = interviews.get(interview_id)
    if pipeline is None:
        raise HTTPException(status_code=404, detail="Interview not found")
    return pipeline


@router.post("/interviews", response_model=InterviewResponse, status_code=201)
async def create_interview(body: InterviewCreateRequest) -> InterviewResponse:
    """Create an interview and start recording. A device that cannot be opened leaves it in phase failed."""
    for evicted in prune_finished():
        events_hub.forget(evicted)
        logger.info("[interviews] Evicted finished interview %s", evicted)
    pipeline = create_pipeline(body.candidate)
    pipeline.add_listener(HubListener(pipeline.interview_id, events_hub))
    interviews[pipeline.interview_id] = pipeline
    logger.info("[interviews] POST /api/interviews interview_id=%s candidate=%s", pipeline.interview_id, body.candidate)
    await pipeline.start()
    return InterviewResponse(**pipeline.snapshot())


@router.post("/interviews/{interview_id}/stop", response_model=InterviewResponse)
async def stop_interview(interview_id: str) -> InterviewResponse:
    """Stop recording; upload and analysis continue in the background."""
    pipeline = _get(interview_id)
    try:
        await pipeline.stop()
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return InterviewResponse(**pipeline.snapshot())


@router.post("/interviews/{interview_id}/reset", response_model=InterviewResponse)
async def reset_interview(interview_id: str) -> InterviewResponse:
    pipeline = _get(interview_id)
    await pipeline.reset()
    # Earlier runs must not replay to subscribers of the fresh one.
    events_hub.forget(interview_id)
    return InterviewResponse(**pipeline.snapshot())


@router.get("/interviews/{interview_id}", response_model=InterviewResponse)
def get_interview(interview_id: str) -> InterviewResponse:
    """Interview status for polling: recording -> uploading -> analyzing -> done | failed."""
    return InterviewResponse(**_get(interview_id).snapshot())
