from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterator, Union

FAILED_TO_START = "FAILED_TO_START"


class JobKind(str, Enum):
    TRANSCRIPTION = "transcription"
    FACE = "face"
    SEGMENT = "segment"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED)


@dataclass
class TranscriptResult:
    transcript: str
    language_code: str | None = None
    result_location: str | None = None      # where the provider wrote its full output
    words: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class FaceDetectionResult:
    faces: list[dict[str, Any]] = field(default_factory=list)

    @property
    def face_count(self) -> int:
        return len(self.faces)


@dataclass
class SegmentDetectionResult:
    segments: list[dict[str, Any]] = field(default_factory=list)

    @property
    def segment_count(self) -> int:
        return len(self.segments)


JobResult = Union[TranscriptResult, FaceDetectionResult, SegmentDetectionResult]

RESULT_TYPES: dict[JobKind, type] = {
    JobKind.TRANSCRIPTION: TranscriptResult,
    JobKind.FACE: FaceDetectionResult,
    JobKind.SEGMENT: SegmentDetectionResult,
}


@dataclass
class ProviderJobStatus:
    """What a provider reports for one job handle on one poll."""

    status: JobStatus
    payload: JobResult | None = None
    result_location: str | None = None
    error: str | None = None


@dataclass
class AnalysisJob:
    kind: JobKind
    job_handle: str | None                  # None when the start call failed
    status: JobStatus = JobStatus.PENDING
    result: JobResult | None = None
    error: str | None = None
    start_error: str | None = None
    polls: int = 0
    query_failures: int = 0                 # consecutive failed status queries

    @classmethod
    def failed_to_start(cls, kind: JobKind, error: str) -> AnalysisJob:
        return cls(kind=kind, job_handle=None, status=JobStatus.FAILED, error=error, start_error=error)

    @property
    def did_fail_to_start(self) -> bool:
        return self.job_handle is None

    @property
    def handle_or_marker(self) -> str:
        return self.job_handle if self.job_handle is not None else FAILED_TO_START


@dataclass(frozen=True)
class JobHandleSet:
    """
    The three jobs of one session, created together by the dispatcher.

    The set itself never changes; the poller updates status/result on the
    individual AnalysisJob records.
    """

    transcription: AnalysisJob
    face: AnalysisJob
    segment: AnalysisJob

    def __post_init__(self) -> None:
        for kind in JobKind:
            job = getattr(self, kind.value)
            if job.kind is not kind:
                raise ValueError(f"{kind.value} slot holds a {job.kind.value} job")

    def __iter__(self) -> Iterator[AnalysisJob]:
        return iter((self.transcription, self.face, self.segment))

    def get(self, kind: JobKind) -> AnalysisJob:
        return getattr(self, JobKind(kind).value)

    def unfinished(self) -> list[AnalysisJob]:
        return [job for job in self if not job.status.is_terminal]

    def failed(self) -> list[AnalysisJob]:
        return [job for job in self if job.status is JobStatus.FAILED]

    @property
    def all_succeeded(self) -> bool:
        return all(job.status is JobStatus.SUCCEEDED for job in self)

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {
            job.kind.value: {
                "job_handle": job.handle_or_marker,
                "status": job.status.value,
                "error": job.error,
            }
            for job in self
        }


@dataclass
class AnalysisReport:
    session_id: str
    candidate: str | None
    storage_key: str
    duration_seconds: float
    transcription: TranscriptResult
    face: FaceDetectionResult
    segment: SegmentDetectionResult
    dispatched_at: datetime
    completed_at: datetime
    simulated_upload: bool = False

    def result_for(self, kind: JobKind) -> JobResult:
        return getattr(self, JobKind(kind).value)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["dispatched_at"] = self.dispatched_at.isoformat()
        data["completed_at"] = self.completed_at.isoformat()
        data["face"]["face_count"] = self.face.face_count
        data["segment"]["segment_count"] = self.segment.segment_count
        return data
