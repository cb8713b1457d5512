"""Start the three analysis jobs for one uploaded recording."""

from __future__ import annotations

import asyncio
import logging
from typing import Mapping

from models.analysis import AnalysisJob, JobHandleSet, JobKind, JobStatus
from services.gcs import gcs_uri
from services.providers import JobProvider

logger = logging.getLogger(__name__)


class JobDispatcher:
    """
    Issues the transcription, face and segment start calls concurrently.

    A start call that raises does not hold up or cancel the others; its slot in
    the returned JobHandleSet is a FAILED_TO_START job carrying the error.
    """

    def __init__(
        self,
        providers: Mapping[JobKind, JobProvider],
        *,
        language_hint: str | None = None,
        bucket_name: str | None = None,
    ) -> None:
        missing = [kind.value for kind in JobKind if kind not in providers]
        if missing:
            raise ValueError(f"No provider configured for: {', '.join(missing)}")
        self._providers = dict(providers)
        self._language_hint = language_hint
        self._bucket_name = bucket_name

    def media_location(self, storage_key: str) -> str:
        return gcs_uri(storage_key, bucket_name=self._bucket_name)

    async def start(self, storage_key: str) -> JobHandleSet:
        media_location = self.media_location(storage_key)
        logger.info("[dispatcher] Starting analysis jobs for %s", media_location)

        async def _start(kind: JobKind) -> str:
            provider = self._providers[kind]
            if kind is JobKind.TRANSCRIPTION:
                return await provider.start(media_location, language_hint=self._language_hint)
            return await provider.start(media_location)

        kinds = list(JobKind)
        outcomes = await asyncio.gather(*(_start(kind) for kind in kinds), return_exceptions=True)

        jobs: dict[JobKind, AnalysisJob] = {}
        for kind, outcome in zip(kinds, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                error = str(outcome) or type(outcome).__name__
                logger.error("[dispatcher] %s job failed to start: %s", kind.value, error)
                jobs[kind] = AnalysisJob.failed_to_start(kind, error)
            else:
                logger.info("[dispatcher] %s job started: %s", kind.value, outcome)
                jobs[kind] = AnalysisJob(kind=kind, job_handle=outcome, status=JobStatus.RUNNING)

        return JobHandleSet(
            transcription=jobs[JobKind.TRANSCRIPTION],
            face=jobs[JobKind.FACE],
            segment=jobs[JobKind.SEGMENT],
        )

