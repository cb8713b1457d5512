"""Poll the three analysis jobs until they all succeed or one fails, then merge results."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Mapping

import httpx
from google.api_core import exceptions as google_exceptions

from models.analysis import (
    RESULT_TYPES,
    AnalysisJob,
    AnalysisReport,
    JobHandleSet,
    JobKind,
    JobStatus,
    ProviderJobStatus,
    TranscriptResult,
)
from models.errors import AnalysisJobError, DispatchError, PollingTimeoutError
from services.providers import JobProvider

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 5.0
POLL_TIMEOUT_SECONDS = 30 * 60
MAX_QUERY_FAILURES = 5

_PERMANENT_QUERY_ERRORS = (
    google_exceptions.NotFound,
    google_exceptions.PermissionDenied,
    google_exceptions.Unauthenticated,
    google_exceptions.InvalidArgument,
)


@dataclass(frozen=True)
class ReportContext:
    """Session metadata stamped onto the final report."""

    session_id: str
    storage_key: str
    duration_seconds: float
    candidate: str | None = None
    simulated_upload: bool = False
    dispatched_at: datetime | None = None


class Poller:
    """
    Fixed-interval poller over one JobHandleSet.

    Each tick queries every unfinished job concurrently. The loop ends on the
    first tick where all three have succeeded, or on the first tick where any
    job reports failure. Jobs still running at that point are left alone (the
    providers have no cancel call) and simply stop being polled.
    """

    def __init__(
        self,
        providers: Mapping[JobKind, JobProvider],
        *,
        interval_seconds: float = POLL_INTERVAL_SECONDS,
        timeout_seconds: float = POLL_TIMEOUT_SECONDS,
        max_query_failures: int = MAX_QUERY_FAILURES,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._providers = dict(providers)
        self._interval = interval_seconds
        self._timeout = timeout_seconds
        self._max_query_failures = max_query_failures
        self._sleep = sleep
        self._clock = clock

    async def poll_once(self, jobs: JobHandleSet) -> list[AnalysisJob]:
        """Query every unfinished job once and write the answers back. Returns the jobs queried."""
        pending = [job for job in jobs.unfinished() if not job.did_fail_to_start]
        outcomes = await asyncio.gather(
            *(self._providers[job.kind].get_status(job.job_handle) for job in pending),
            return_exceptions=True,
        )
        for job, outcome in zip(pending, outcomes):
            job.polls += 1
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                self._record_query_failure(job, outcome)
                continue
            job.query_failures = 0
            _apply_status(job, outcome)
        return pending

    def _record_query_failure(self, job: AnalysisJob, error: BaseException) -> None:
        job.query_failures += 1
        if not _is_permanent(error) and job.query_failures < self._max_query_failures:
            logger.warning(
                "[poller] %s status query failed (%d/%d): %s",
                job.kind.value,
                job.query_failures,
                self._max_query_failures,
                error,
            )
            return
        job.status = JobStatus.FAILED
        job.error = f"status query failed: {error}"
        logger.error("[poller] Giving up on %s job %s: %s", job.kind.value, job.job_handle, error)

    async def wait_for_report(self, jobs: JobHandleSet, context: ReportContext) -> AnalysisReport:
        not_started = [job for job in jobs if job.did_fail_to_start]
        if not_started:
            detail = "; ".join(f"{job.kind.value}: {job.start_error}" for job in not_started)
            raise DispatchError(detail, failed_kinds=[job.kind for job in not_started])

        started = self._clock()
        tick = 0
        while True:
            remaining = self._timeout - (self._clock() - started)
            if remaining > 0:
                await self._sleep(min(self._interval, remaining))
                remaining = self._timeout - (self._clock() - started)
            if remaining <= 0:
                raise PollingTimeoutError(
                    f"Analysis still running after {self._timeout:.0f}s: "
                    + ", ".join(job.kind.value for job in jobs.unfinished())
                )
            tick += 1
            try:
                await asyncio.wait_for(self.poll_once(jobs), timeout=remaining)
            except asyncio.TimeoutError:
                raise PollingTimeoutError(f"Status queries did not return within {self._timeout:.0f}s") from None

            logger.info(
                "[poller] tick %d: %s",
                tick,
                ", ".join(f"{job.kind.value}={job.status.value}" for job in jobs),
            )

            failed = jobs.failed()
            if failed:
                detail = "; ".join(f"{job.kind.value}: {job.error}" for job in failed)
                logger.error("[poller] Analysis failed on tick %d: %s", tick, detail)
                raise AnalysisJobError(detail, failed_kinds=[job.kind for job in failed])
            if jobs.all_succeeded:
                logger.info("[poller] All analysis jobs succeeded after %d ticks", tick)
                return build_report(jobs, context)


def _is_permanent(error: BaseException) -> bool:
    if isinstance(error, httpx.HTTPStatusError):
        code = error.response.status_code
        return 400 <= code < 500 and code != 429
    return isinstance(error, _PERMANENT_QUERY_ERRORS)


def _apply_status(job: AnalysisJob, report: ProviderJobStatus) -> None:
    if report.status is JobStatus.SUCCEEDED:
        expected = RESULT_TYPES[job.kind]
        if not isinstance(report.payload, expected):
            job.status = JobStatus.FAILED
            job.error = f"provider reported success without a {expected.__name__}"
            return
        if isinstance(report.payload, TranscriptResult) and not report.payload.result_location:
            report.payload.result_location = report.result_location
        job.result = report.payload
    elif report.status is JobStatus.FAILED:
        job.error = report.error or "provider reported failure"
    job.status = report.status


def build_report(jobs: JobHandleSet, context: ReportContext) -> AnalysisReport:
    """Merge the three job results into one report. Every job must have succeeded."""
    if not jobs.all_succeeded:
        raise ValueError("Report requires all three jobs to have succeeded")
    now = datetime.now(timezone.utc)
    return AnalysisReport(
        session_id=context.session_id,
        candidate=context.candidate,
        storage_key=context.storage_key,
        duration_seconds=context.duration_seconds,
        transcription=jobs.transcription.result,
        face=jobs.face.result,
        segment=jobs.segment.result,
        dispatched_at=context.dispatched_at or now,
        completed_at=now,
        simulated_upload=context.simulated_upload,
    )
