"""
Analysis job providers.

Every provider exposes the same two calls: start() returns an opaque job
handle, get_status() reports where that job stands. The Google providers run
long-running operations (Speech-to-Text, Video Intelligence) and use the
operation name as the handle; RemoteJobProvider drives the same jobs through
the backend's /api/analysis routes.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import timedelta
from typing import Any, Protocol

from models.analysis import (
    RESULT_TYPES,
    FaceDetectionResult,
    JobKind,
    JobStatus,
    ProviderJobStatus,
    SegmentDetectionResult,
    TranscriptResult,
)
from services.backend_client import BackendClient
from services.gcs import get_bucket_name

logger = logging.getLogger(__name__)

TRANSCRIPTION_PREFIX = "transcriptions"


class JobProvider(Protocol):
    kind: JobKind

    async def start(self, media_location: str, *, language_hint: str | None = None) -> str: ...

    async def get_status(self, job_handle: str) -> ProviderJobStatus: ...


def _seconds(value: Any) -> float:
    """Offsets arrive as timedelta (proto-plus) or as raw Duration messages."""
    if value is None:
        return 0.0
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(getattr(value, "seconds", 0)) + float(getattr(value, "nanos", 0)) / 1e9


class _OperationProvider:
    """Shared start/poll plumbing for Google long-running operations."""

    kind: JobKind

    def __init__(self, *, client: Any | None = None) -> None:
        self._client = client

    def _get_client(self) -> Any:
        raise NotImplementedError

    def _begin(self, media_location: str, language_hint: str | None) -> Any:
        raise NotImplementedError

    def _parse(self, response_bytes: bytes) -> ProviderJobStatus:
        raise NotImplementedError

    async def start(self, media_location: str, *, language_hint: str | None = None) -> str:
        operation = await asyncio.to_thread(self._begin, media_location, language_hint)
        name = operation.operation.name
        logger.info("[providers] %s job started: %s (media=%s)", self.kind.value, name, media_location)
        return name

    async def get_status(self, job_handle: str) -> ProviderJobStatus:
        return await asyncio.to_thread(self._status, job_handle)

    def _status(self, job_handle: str) -> ProviderJobStatus:
        operations = self._get_client().transport.operations_client
        op = operations.get_operation(job_handle)
        if not op.done:
            return ProviderJobStatus(status=JobStatus.RUNNING)
        if op.HasField("error") and op.error.code:
            return ProviderJobStatus(status=JobStatus.FAILED, error=op.error.message or f"code {op.error.code}")
        return self._parse(op.response.value)


class GoogleSpeechTranscriptionProvider(_OperationProvider):
    """Speech-to-Text long-running recognition over the WebM/Opus audio track."""

    kind = JobKind.TRANSCRIPTION

    def __init__(
        self,
        *,
        client: Any | None = None,
        output_bucket: str | None = None,
        default_language: str = "ko-KR",
        model: str = "latest_long",
    ) -> None:
        super().__init__(client=client)
        self._output_bucket = output_bucket
        self._default_language = default_language
        self._model = model

    def _get_client(self) -> Any:
        if self._client is None:
            from google.cloud import speech_v1 as speech  # noqa: PLC0415

            self._client = speech.SpeechClient()
        return self._client

    def _begin(self, media_location: str, language_hint: str | None) -> Any:
        from google.cloud import speech_v1 as speech  # noqa: PLC0415

        bucket = self._output_bucket or get_bucket_name()
        output_uri = f"gs://{bucket}/{TRANSCRIPTION_PREFIX}/transcription-{uuid.uuid4().hex}.json"
        request = speech.LongRunningRecognizeRequest(
            config=speech.RecognitionConfig(
                encoding=speech.RecognitionConfig.AudioEncoding.WEBM_OPUS,
                sample_rate_hertz=48000,
                language_code=language_hint or self._default_language,
                enable_word_time_offsets=True,
                enable_automatic_punctuation=True,
                model=self._model,
            ),
            audio=speech.RecognitionAudio(uri=media_location),
            output_config=speech.TranscriptOutputConfig(gcs_uri=output_uri),
        )
        return self._get_client().long_running_recognize(request=request)

    def _parse(self, response_bytes: bytes) -> ProviderJobStatus:
        from google.cloud import speech_v1 as speech  # noqa: PLC0415

        response = speech.LongRunningRecognizeResponse.deserialize(response_bytes)
        parts: list[str] = []
        words: list[dict[str, Any]] = []
        language_code = None
        for result in response.results or []:
            if not result.alternatives:
                continue
            alt = result.alternatives[0]
            language_code = language_code or (result.language_code or None)
            text = (alt.transcript or "").strip()
            if text:
                parts.append(text)
            for w in alt.words or []:
                words.append({"word": w.word, "start": _seconds(w.start_time), "end": _seconds(w.end_time)})
        location = response.output_config.gcs_uri or None
        return ProviderJobStatus(
            status=JobStatus.SUCCEEDED,
            payload=TranscriptResult(
                transcript=" ".join(parts),
                language_code=language_code,
                result_location=location,
                words=words,
            ),
            result_location=location,
        )


class _VideoIntelligenceProvider(_OperationProvider):
    def _get_client(self) -> Any:
        if self._client is None:
            from google.cloud import videointelligence  # noqa: PLC0415

            self._client = videointelligence.VideoIntelligenceServiceClient()
        return self._client

    def _features(self) -> list[Any]:
        raise NotImplementedError

    def _video_context(self) -> dict[str, Any] | None:
        return None

    def _begin(self, media_location: str, language_hint: str | None) -> Any:
        request: dict[str, Any] = {"input_uri": media_location, "features": self._features()}
        context = self._video_context()
        if context:
            request["video_context"] = context
        return self._get_client().annotate_video(request=request)

    def _annotation(self, response_bytes: bytes) -> tuple[Any | None, str | None]:
        from google.cloud import videointelligence  # noqa: PLC0415

        response = videointelligence.AnnotateVideoResponse.deserialize(response_bytes)
        results = list(response.annotation_results or [])
        if not results:
            return None, None
        first = results[0]
        if first.error and first.error.code:
            return first, first.error.message or f"code {first.error.code}"
        return first, None


class VideoIntelligenceFaceProvider(_VideoIntelligenceProvider):
    kind = JobKind.FACE

    def _features(self) -> list[Any]:
        from google.cloud import videointelligence  # noqa: PLC0415

        return [videointelligence.Feature.FACE_DETECTION]

    def _video_context(self) -> dict[str, Any] | None:
        return {"face_detection_config": {"include_bounding_boxes": True, "include_attributes": True}}

    def _parse(self, response_bytes: bytes) -> ProviderJobStatus:
        annotation, error = self._annotation(response_bytes)
        if error:
            return ProviderJobStatus(status=JobStatus.FAILED, error=error)
        faces: list[dict[str, Any]] = []
        for face in getattr(annotation, "face_detection_annotations", None) or []:
            for track in face.tracks or []:
                faces.append(
                    {
                        "start": _seconds(track.segment.start_time_offset),
                        "end": _seconds(track.segment.end_time_offset),
                        "confidence": float(track.confidence),
                        "attributes": {
                            a.name: float(a.confidence)
                            for obj in (track.timestamped_objects or [])[:1]
                            for a in (obj.attributes or [])
                        },
                    }
                )
        return ProviderJobStatus(status=JobStatus.SUCCEEDED, payload=FaceDetectionResult(faces=faces))


class VideoIntelligenceSegmentProvider(_VideoIntelligenceProvider):
    kind = JobKind.SEGMENT

    def _features(self) -> list[Any]:
        from google.cloud import videointelligence  # noqa: PLC0415

        return [videointelligence.Feature.SHOT_CHANGE_DETECTION]

    def _parse(self, response_bytes: bytes) -> ProviderJobStatus:
        annotation, error = self._annotation(response_bytes)
        if error:
            return ProviderJobStatus(status=JobStatus.FAILED, error=error)
        segments = [
            {
                "type": "SHOT",
                "start": _seconds(shot.start_time_offset),
                "end": _seconds(shot.end_time_offset),
            }
            for shot in getattr(annotation, "shot_annotations", None) or []
        ]
        return ProviderJobStatus(status=JobStatus.SUCCEEDED, payload=SegmentDetectionResult(segments=segments))


class RemoteJobProvider:
    """Starts and checks one kind of job through the backend's analysis routes."""

    def __init__(self, kind: JobKind, client: BackendClient) -> None:
        self.kind = kind
        self._client = client

    async def start(self, media_location: str, *, language_hint: str | None = None) -> str:
        return await self._client.start_job(self.kind, media_location, language_hint=language_hint)

    async def get_status(self, job_handle: str) -> ProviderJobStatus:
        body = await self._client.get_job_status(self.kind, job_handle)
        return status_from_dict(self.kind, body)


def status_to_dict(status: ProviderJobStatus) -> dict[str, Any]:
    payload = None
    if status.payload is not None:
        payload = dict(vars(status.payload))
    return {
        "status": status.status.value,
        "payload": payload,
        "result_location": status.result_location,
        "error": status.error,
    }


def status_from_dict(kind: JobKind, body: dict[str, Any]) -> ProviderJobStatus:
    payload = body.get("payload")
    return ProviderJobStatus(
        status=JobStatus(body["status"]),
        payload=RESULT_TYPES[kind](**payload) if payload is not None else None,
        result_location=body.get("result_location"),
        error=body.get("error"),
    )


def google_providers(*, language: str = "ko-KR") -> dict[JobKind, JobProvider]:
    return {
        JobKind.TRANSCRIPTION: GoogleSpeechTranscriptionProvider(default_language=language),
        JobKind.FACE: VideoIntelligenceFaceProvider(),
        JobKind.SEGMENT: VideoIntelligenceSegmentProvider(),
    }


def remote_providers(client: BackendClient) -> dict[JobKind, JobProvider]:
    return {kind: RemoteJobProvider(kind, client) for kind in JobKind}
