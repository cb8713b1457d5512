"""Interview pipeline: Recorder → UploadCoordinator → JobDispatcher → Poller."""

from __future__ import annotations

import asyncio
import logging
import secrets
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Protocol

from models.analysis import AnalysisReport, JobHandleSet, JobKind
from models.errors import (
    AnalysisJobError,
    CaptureError,
    ErrorKind,
    InvalidTransitionError,
    PipelineError,
    UploadError,
)
from models.session import PipelinePhase, RecordingSession
from models.upload import UploadResult
from services.backend_client import BackendClient
from services.dispatcher import JobDispatcher
from services.poller import Poller, ReportContext
from services.providers import JobProvider
from services.recorder import CHUNK_SECONDS, AvCaptureDevice, CaptureDevice, Recorder
from services.settings import Settings
from services.upload import UploadCoordinator

logger = logging.getLogger(__name__)

_SESSION_ALPHABET = "23456789abcdefghjkmnpqrstuvwxyz"
_SESSION_ID_LENGTH = 12

_TRANSITIONS: dict[PipelinePhase, frozenset[PipelinePhase]] = {
    PipelinePhase.IDLE: frozenset({PipelinePhase.RECORDING, PipelinePhase.FAILED}),
    PipelinePhase.RECORDING: frozenset({PipelinePhase.UPLOADING, PipelinePhase.FAILED}),
    PipelinePhase.UPLOADING: frozenset({PipelinePhase.ANALYZING, PipelinePhase.FAILED}),
    PipelinePhase.ANALYZING: frozenset({PipelinePhase.DONE, PipelinePhase.FAILED}),
    PipelinePhase.DONE: frozenset(),
    PipelinePhase.FAILED: frozenset(),
}


class PipelineListener(Protocol):
    def on_phase_change(self, phase: PipelinePhase) -> None: ...

    def on_report(self, report: AnalysisReport) -> None: ...

    def on_error(self, kind: ErrorKind, detail: dict[str, str]) -> None: ...


def generate_session_id() -> str:
    """Session ID safe for URLs: no 0/O, 1/I/l."""
    return "".join(secrets.choice(_SESSION_ALPHABET) for _ in range(_SESSION_ID_LENGTH))


class InterviewPipeline:
    """
    Owns the phase of one interview and sequences the components.

    The pipeline only moves between phases in response to a component's
    outcome; recording, uploading and analysis logic live in the components.
    start()/stop()/reset() return quickly: upload and analysis run in a
    background task, and progress is reported through the listeners.
    """

    def __init__(
        self,
        *,
        device: CaptureDevice,
        uploader: UploadCoordinator,
        dispatcher: JobDispatcher,
        poller: Poller,
        listeners: Iterable[PipelineListener] = (),
        candidate: str | None = None,
        interview_id: str | None = None,
        chunk_seconds: float = CHUNK_SECONDS,
    ) -> None:
        self.interview_id = interview_id or generate_session_id()
        self.candidate = candidate
        self._device = device
        self._uploader = uploader
        self._dispatcher = dispatcher
        self._poller = poller
        self._listeners = list(listeners)
        self._chunk_seconds = chunk_seconds
        self._lock = asyncio.Lock()
        self._finished = asyncio.Event()
        self._phase = PipelinePhase.IDLE
        self._clear()

    def _clear(self) -> None:
        self.session_id: str | None = None
        self._recorder: Recorder | None = None
        self._task: asyncio.Task[None] | None = None
        self.recording: RecordingSession | None = None
        self.upload: UploadResult | None = None
        self.jobs: JobHandleSet | None = None
        self.report: AnalysisReport | None = None
        self.error: PipelineError | None = None

    @property
    def phase(self) -> PipelinePhase:
        return self._phase

    def add_listener(self, listener: PipelineListener) -> None:
        self._listeners.append(listener)

    async def start(self) -> PipelinePhase:
        """Acquire the capture device and begin recording (Idle → Recording, or Idle → Failed)."""
        async with self._lock:
            self._require(PipelinePhase.IDLE, "start")
            self.session_id = generate_session_id()
            recorder = Recorder(
                self._device,
                chunk_seconds=self._chunk_seconds,
                on_failure=self._on_capture_failure,
            )
            try:
                await recorder.start(self.session_id)
            except CaptureError as exc:
                logger.error("[pipeline] %s: capture could not start: %s", self.interview_id, exc)
                self._fail(exc)
                return self._phase
            self._recorder = recorder
            self._set_phase(PipelinePhase.RECORDING)
            return self._phase

    async def stop(self) -> PipelinePhase:
        """Finish recording and hand the blob to upload + analysis in the background."""
        async with self._lock:
            self._require(PipelinePhase.RECORDING, "stop")
            assert self._recorder is not None
            try:
                recording = await self._recorder.stop()
            except CaptureError as exc:
                if self._phase is PipelinePhase.RECORDING:
                    self._fail(exc)
                return self._phase
            if self._phase is not PipelinePhase.RECORDING:
                # The device failed while we were stopping; the failure already won.
                return self._phase
            self.recording = recording
            self._set_phase(PipelinePhase.UPLOADING)
            self._task = asyncio.create_task(self._process(recording), name=f"pipeline-{self.interview_id}")
            return self._phase

    async def reset(self) -> PipelinePhase:
        """
        Return to Idle from any phase.

        Local capture is stopped and polling is abandoned. Jobs already sent to
        the providers keep running remotely; nothing cancels them.
        """
        async with self._lock:
            if self._recorder is not None and self._recorder.is_recording:
                await self._recorder.abort()
            if self._task is not None and not self._task.done():
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            previous = self._phase
            self._clear()
            self._finished.clear()
            self._phase = PipelinePhase.IDLE
            logger.info("[pipeline] %s: reset from %s", self.interview_id, previous.value)
            self._notify("on_phase_change", PipelinePhase.IDLE)
            return self._phase

    async def wait(self) -> PipelinePhase:
        """Block until the pipeline reaches Done or Failed."""
        await self._finished.wait()
        return self._phase

    def snapshot(self) -> dict[str, Any]:
        return {
            "interview_id": self.interview_id,
            "session_id": self.session_id,
            "candidate": self.candidate,
            "phase": self._phase.value,
            "storage_key": self.upload.storage_key if self.upload else None,
            "simulated_upload": self.upload.simulated if self.upload else False,
            "duration_seconds": self.recording.duration_seconds if self.recording else None,
            "jobs": self.jobs.to_dict() if self.jobs else None,
            "report": self.report.to_dict() if self.report else None,
            "error": self.error.to_dict() if self.error else None,
        }

    async def _process(self, recording: RecordingSession) -> None:
        try:
            upload = await self._uploader.upload(recording.captured_blob, content_type=recording.content_type)
            self.upload = upload
            self._set_phase(PipelinePhase.ANALYZING)

            dispatched_at = datetime.now(timezone.utc)
            self.jobs = await self._dispatcher.start(upload.storage_key)
            report = await self._poller.wait_for_report(
                self.jobs,
                ReportContext(
                    session_id=recording.session_id,
                    storage_key=upload.storage_key,
                    duration_seconds=recording.duration_seconds,
                    candidate=self.candidate,
                    simulated_upload=upload.simulated,
                    dispatched_at=dispatched_at,
                ),
            )
        except PipelineError as exc:
            self._fail(exc)
            return
        except Exception as exc:  # noqa: BLE001
            logger.exception("[pipeline] %s: unexpected error while %s", self.interview_id, self._phase.value)
            if self._phase is PipelinePhase.UPLOADING:
                self._fail(UploadError(str(exc)))
            else:
                self._fail(AnalysisJobError(str(exc)))
            return

        self.report = report
        self._set_phase(PipelinePhase.DONE)
        self._notify("on_report", report)
        self._finished.set()

    def _on_capture_failure(self, error: CaptureError) -> None:
        if self._phase is PipelinePhase.RECORDING:
            self._fail(error)

    def _fail(self, error: PipelineError) -> None:
        self.error = error
        self._set_phase(PipelinePhase.FAILED)
        logger.error("[pipeline] %s failed (%s): %s", self.interview_id, error.kind.value, error.detail)
        self._notify("on_error", error.kind, error.to_dict())
        self._finished.set()

    def _require(self, phase: PipelinePhase, action: str) -> None:
        if self._phase is not phase:
            raise InvalidTransitionError(f"Cannot {action} while {self._phase.value}")

    def _set_phase(self, phase: PipelinePhase) -> None:
        if phase not in _TRANSITIONS[self._phase]:
            raise InvalidTransitionError(f"{self._phase.value} -> {phase.value} is not a valid transition")
        logger.info("[pipeline] %s: %s -> %s", self.interview_id, self._phase.value, phase.value)
        self._phase = phase
        self._notify("on_phase_change", phase)

    def _notify(self, method: str, *args: Any) -> None:
        for listener in self._listeners:
            try:
                getattr(listener, method)(*args)
            except Exception:  # noqa: BLE001
                logger.warning("[pipeline] listener %r.%s raised", listener, method, exc_info=True)


def build_pipeline(
    settings: Settings,
    *,
    client: BackendClient,
    providers: Mapping[JobKind, JobProvider],
    device: CaptureDevice | None = None,
    candidate: str | None = None,
    listeners: Iterable[PipelineListener] = (),
) -> InterviewPipeline:
    """Wire the production components for one interview from settings."""
    return InterviewPipeline(
        device=device or AvCaptureDevice(settings.capture_device, input_format=settings.capture_format),
        uploader=UploadCoordinator.with_backend(client, allow_simulated=settings.allow_simulated_upload),
        dispatcher=JobDispatcher(providers, language_hint=settings.transcribe_language),
        poller=Poller(
            providers,
            interval_seconds=settings.poll_interval_seconds,
            timeout_seconds=settings.poll_timeout_seconds,
        ),
        listeners=listeners,
        candidate=candidate,
        chunk_seconds=settings.chunk_seconds,
    )
