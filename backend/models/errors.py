"""Error taxonomy for the interview pipeline."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .analysis import JobKind


class ErrorKind(str, Enum):
    CAPTURE = "capture"
    UPLOAD = "upload"
    DISPATCH = "dispatch"
    ANALYSIS = "analysis"
    TIMEOUT = "timeout"


class PipelineError(Exception):
    """
    Base for every terminal pipeline failure.

    `category` is the human-readable cause shown to the user; `detail` keeps
    the underlying reason for logs.
    """

    kind: ErrorKind
    category: str = "Interview processing failed"

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail or self.category)
        self.detail = detail

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind.value, "category": self.category, "detail": self.detail}


class CaptureError(PipelineError):
    kind = ErrorKind.CAPTURE
    category = "Camera or microphone unavailable"

    PERMISSION_DENIED = "permission_denied"
    DEVICE_UNAVAILABLE = "device_unavailable"
    DEVICE_FAILED = "device_failed"

    def __init__(self, detail: str = "", *, reason: str = DEVICE_UNAVAILABLE) -> None:
        super().__init__(detail)
        self.reason = reason
        if reason == self.PERMISSION_DENIED:
            self.category = "Camera or microphone permission denied"

    def to_dict(self) -> dict[str, str]:
        return {**super().to_dict(), "reason": self.reason}


class UploadError(PipelineError):
    kind = ErrorKind.UPLOAD
    category = "Recording could not be uploaded"


class DispatchError(PipelineError):
    kind = ErrorKind.DISPATCH
    category = "Analysis could not be started"

    def __init__(self, detail: str = "", *, failed_kinds: list[JobKind] | None = None) -> None:
        super().__init__(detail)
        self.failed_kinds = list(failed_kinds or [])


class AnalysisJobError(PipelineError):
    kind = ErrorKind.ANALYSIS
    category = "Interview analysis failed"

    def __init__(self, detail: str = "", *, failed_kinds: list[JobKind] | None = None) -> None:
        super().__init__(detail)
        self.failed_kinds = list(failed_kinds or [])

    def to_dict(self) -> dict[str, str]:
        return {**super().to_dict(), "failed_jobs": ",".join(k.value for k in self.failed_kinds)}


class PollingTimeoutError(PipelineError):
    kind = ErrorKind.TIMEOUT
    category = "Interview analysis timed out"


class InvalidTransitionError(Exception):
    """Raised when a pipeline call is not allowed in the current phase."""
