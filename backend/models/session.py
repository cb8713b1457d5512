from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class PipelinePhase(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    UPLOADING = "uploading"
    ANALYZING = "analyzing"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PipelinePhase.DONE, PipelinePhase.FAILED)


@dataclass
class RecordingSession:
    """
    Media captured for one interview.

    Chunks are appended while recording; finalize() freezes the blob and the
    duration. After that the session is read-only.
    """

    session_id: str
    content_type: str = "video/webm"
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    stopped_at: datetime | None = None
    duration_seconds: float = 0.0
    _chunks: list[bytes] = field(default_factory=list, repr=False)
    _blob: bytes | None = field(default=None, repr=False)

    @property
    def finalized(self) -> bool:
        return self._blob is not None

    @property
    def chunk_count(self) -> int:
        return len(self._chunks)

    @property
    def captured_blob(self) -> bytes:
        if self._blob is not None:
            return self._blob
        return b"".join(self._chunks)

    @property
    def size_bytes(self) -> int:
        return len(self.captured_blob)

    def append(self, chunk: bytes) -> None:
        if self.finalized:
            raise RuntimeError(f"Recording {self.session_id} is finalized; cannot append")
        if chunk:
            self._chunks.append(chunk)

    def finalize(self, duration_seconds: float, *, now: datetime | None = None) -> None:
        if self.finalized:
            return
        self.stopped_at = now or datetime.now(timezone.utc)
        self.duration_seconds = max(0.0, float(duration_seconds))
        self._blob = b"".join(self._chunks)
