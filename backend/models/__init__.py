from .analysis import (
    FAILED_TO_START,
    AnalysisJob,
    AnalysisReport,
    FaceDetectionResult,
    JobHandleSet,
    JobKind,
    JobStatus,
    ProviderJobStatus,
    SegmentDetectionResult,
    TranscriptResult,
)
from .errors import (
    AnalysisJobError,
    CaptureError,
    DispatchError,
    ErrorKind,
    InvalidTransitionError,
    PipelineError,
    PollingTimeoutError,
    UploadError,
)
from .session import PipelinePhase, RecordingSession
from .upload import UploadAttempt, UploadOutcome, UploadResult, UploadStrategy, WriteCredential

__all__ = [
    "PipelinePhase",
    "RecordingSession",
    "UploadStrategy",
    "UploadOutcome",
    "UploadAttempt",
    "UploadResult",
    "WriteCredential",
    "JobKind",
    "JobStatus",
    "AnalysisJob",
    "JobHandleSet",
    "ProviderJobStatus",
    "TranscriptResult",
    "FaceDetectionResult",
    "SegmentDetectionResult",
    "AnalysisReport",
    "FAILED_TO_START",
    "ErrorKind",
    "PipelineError",
    "CaptureError",
    "UploadError",
    "DispatchError",
    "AnalysisJobError",
    "PollingTimeoutError",
    "InvalidTransitionError",
]
