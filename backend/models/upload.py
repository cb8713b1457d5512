from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class UploadStrategy(str, Enum):
    PRIMARY = "primary"        # signed URL, direct write to storage
    FALLBACK = "fallback"      # proxied through the backend
    SIMULATED = "simulated"    # degraded mode placeholder, nothing written


class UploadOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class WriteCredential:
    url: str                   # V4 signed PUT URL
    storage_key: str           # object the URL is bound to
    bucket: str
    content_type: str
    expires_at: datetime | None = None


@dataclass
class UploadAttempt:
    strategy: UploadStrategy
    started_at: datetime
    ended_at: datetime | None = None
    bytes_transferred: int = 0
    outcome: UploadOutcome | None = None
    storage_key: str | None = None
    error: str | None = None
    orphaned_key: str | None = None   # object a failed attempt may have left behind


@dataclass
class UploadResult:
    storage_key: str
    strategy: UploadStrategy
    simulated: bool = False
    attempts: list[UploadAttempt] = field(default_factory=list)
