"""Tests for Google provider adapters (google.cloud mocked) and the remote provider."""

from __future__ import annotations

import sys
from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import httpx
import pytest

from models.analysis import FaceDetectionResult, JobKind, JobStatus, ProviderJobStatus, TranscriptResult
from services.backend_client import BackendClient
from services.providers import (
    GoogleSpeechTranscriptionProvider,
    RemoteJobProvider,
    VideoIntelligenceFaceProvider,
    VideoIntelligenceSegmentProvider,
    status_from_dict,
    status_to_dict,
)


def _google_modules(**submodules: MagicMock) -> dict[str, MagicMock]:
    mock_cloud = MagicMock()
    modules = {"google": MagicMock(), "google.cloud": mock_cloud}
    for name, module in submodules.items():
        setattr(mock_cloud, name, module)
        modules[f"google.cloud.{name}"] = module
    return modules


def _done_operation(value: bytes = b"response-bytes") -> MagicMock:
    op = MagicMock()
    op.done = True
    op.HasField.return_value = False
    op.response.value = value
    return op


@pytest.mark.asyncio
async def test_speech_start_requests_webm_opus_with_language_hint() -> None:
    speech = MagicMock()
    client = MagicMock()
    client.long_running_recognize.return_value.operation.name = "projects/p/operations/stt-1"
    provider = GoogleSpeechTranscriptionProvider(client=client, output_bucket="mockview-test")

    with patch.dict(sys.modules, _google_modules(speech_v1=speech)):
        handle = await provider.start("gs://mockview-test/videos/k.webm", language_hint="en-US")

    assert handle == "projects/p/operations/stt-1"
    config_kw = speech.RecognitionConfig.call_args[1]
    assert config_kw["language_code"] == "en-US"
    assert config_kw["sample_rate_hertz"] == 48000
    assert config_kw["encoding"] is speech.RecognitionConfig.AudioEncoding.WEBM_OPUS
    speech.RecognitionAudio.assert_called_once_with(uri="gs://mockview-test/videos/k.webm")
    output_uri = speech.TranscriptOutputConfig.call_args[1]["gcs_uri"]
    assert output_uri.startswith("gs://mockview-test/transcriptions/transcription-")


@pytest.mark.asyncio
async def test_speech_start_defaults_to_korean() -> None:
    speech = MagicMock()
    client = MagicMock()
    provider = GoogleSpeechTranscriptionProvider(client=client, output_bucket="b")
    with patch.dict(sys.modules, _google_modules(speech_v1=speech)):
        await provider.start("gs://b/videos/k.webm")
    assert speech.RecognitionConfig.call_args[1]["language_code"] == "ko-KR"


@pytest.mark.asyncio
async def test_operation_not_done_is_running() -> None:
    client = MagicMock()
    client.transport.operations_client.get_operation.return_value = MagicMock(done=False)
    provider = GoogleSpeechTranscriptionProvider(client=client)

    status = await provider.get_status("projects/p/operations/stt-1")

    assert status.status is JobStatus.RUNNING
    client.transport.operations_client.get_operation.assert_called_once_with("projects/p/operations/stt-1")


@pytest.mark.asyncio
async def test_operation_error_is_failed() -> None:
    op = MagicMock()
    op.done = True
    op.HasField.return_value = True
    op.error.code = 3
    op.error.message = "Invalid audio encoding"
    client = MagicMock()
    client.transport.operations_client.get_operation.return_value = op

    status = await VideoIntelligenceFaceProvider(client=client).get_status("op")

    assert status.status is JobStatus.FAILED
    assert status.error == "Invalid audio encoding"


@pytest.mark.asyncio
async def test_speech_result_is_parsed_into_transcript() -> None:
    speech = MagicMock()
    word = SimpleNamespace(word="안녕하세요", start_time=timedelta(seconds=0.5), end_time=timedelta(seconds=1.2))
    speech.LongRunningRecognizeResponse.deserialize.return_value = SimpleNamespace(
        results=[
            SimpleNamespace(
                language_code="ko-kr",
                alternatives=[SimpleNamespace(transcript=" 안녕하세요 ", words=[word])],
            ),
            SimpleNamespace(language_code="ko-kr", alternatives=[]),
            SimpleNamespace(
                language_code="ko-kr",
                alternatives=[SimpleNamespace(transcript="반갑습니다", words=[])],
            ),
        ],
        output_config=SimpleNamespace(gcs_uri="gs://b/transcriptions/t.json"),
    )
    client = MagicMock()
    client.transport.operations_client.get_operation.return_value = _done_operation()
    provider = GoogleSpeechTranscriptionProvider(client=client)

    with patch.dict(sys.modules, _google_modules(speech_v1=speech)):
        status = await provider.get_status("op")

    assert status.status is JobStatus.SUCCEEDED
    assert isinstance(status.payload, TranscriptResult)
    assert status.payload.transcript == "안녕하세요 반갑습니다"
    assert status.payload.language_code == "ko-kr"
    assert status.payload.words == [{"word": "안녕하세요", "start": 0.5, "end": 1.2}]
    assert status.result_location == "gs://b/transcriptions/t.json"
    speech.LongRunningRecognizeResponse.deserialize.assert_called_once_with(b"response-bytes")


@pytest.mark.asyncio
async def test_face_detection_requests_feature_and_parses_tracks() -> None:
    vi = MagicMock()
    client = MagicMock()
    client.annotate_video.return_value.operation.name = "projects/p/operations/face-1"
    track = SimpleNamespace(
        segment=SimpleNamespace(start_time_offset=timedelta(seconds=1), end_time_offset=timedelta(seconds=4)),
        confidence=0.87,
        timestamped_objects=[SimpleNamespace(attributes=[SimpleNamespace(name="smiling", confidence=0.6)])],
    )
    vi.AnnotateVideoResponse.deserialize.return_value = SimpleNamespace(
        annotation_results=[SimpleNamespace(error=None, face_detection_annotations=[SimpleNamespace(tracks=[track])])]
    )
    client.transport.operations_client.get_operation.return_value = _done_operation()
    provider = VideoIntelligenceFaceProvider(client=client)

    with patch.dict(sys.modules, _google_modules(videointelligence=vi)):
        handle = await provider.start("gs://b/videos/k.webm")
        status = await provider.get_status(handle)

    request = client.annotate_video.call_args[1]["request"]
    assert request["input_uri"] == "gs://b/videos/k.webm"
    assert request["features"] == [vi.Feature.FACE_DETECTION]
    assert request["video_context"]["face_detection_config"]["include_attributes"] is True
    assert status.status is JobStatus.SUCCEEDED
    assert isinstance(status.payload, FaceDetectionResult)
    assert status.payload.faces == [
        {"start": 1.0, "end": 4.0, "confidence": 0.87, "attributes": {"smiling": 0.6}},
    ]


@pytest.mark.asyncio
async def test_segment_detection_reports_shots_and_annotation_errors() -> None:
    vi = MagicMock()
    client = MagicMock()
    client.transport.operations_client.get_operation.return_value = _done_operation()
    shot = SimpleNamespace(
        start_time_offset=SimpleNamespace(seconds=2, nanos=500_000_000),
        end_time_offset=SimpleNamespace(seconds=5, nanos=0),
    )
    vi.AnnotateVideoResponse.deserialize.return_value = SimpleNamespace(
        annotation_results=[SimpleNamespace(error=None, shot_annotations=[shot])]
    )
    provider = VideoIntelligenceSegmentProvider(client=client)

    with patch.dict(sys.modules, _google_modules(videointelligence=vi)):
        ok = await provider.get_status("op")
        vi.AnnotateVideoResponse.deserialize.return_value = SimpleNamespace(
            annotation_results=[SimpleNamespace(error=SimpleNamespace(code=13, message="internal"))]
        )
        failed = await provider.get_status("op")

    assert ok.payload.segments == [{"type": "SHOT", "start": 2.5, "end": 5.0}]
    assert failed.status is JobStatus.FAILED
    assert failed.error == "internal"


def test_status_dict_round_trip() -> None:
    original = ProviderJobStatus(
        status=JobStatus.SUCCEEDED,
        payload=FaceDetectionResult(faces=[{"start": 0.0, "end": 1.0}]),
    )
    body = status_to_dict(original)
    assert body["payload"] == {"faces": [{"start": 0.0, "end": 1.0}]}
    restored = status_from_dict(JobKind.FACE, body)
    assert restored.payload == original.payload
    assert status_from_dict(JobKind.FACE, {"status": "running"}).payload is None


@pytest.mark.asyncio
async def test_remote_provider_uses_backend_routes() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            assert request.url.path == "/api/analysis/jobs/transcription"
            return httpx.Response(200, json={"job_handle": "projects/p/operations/1"})
        assert request.url.path == "/api/analysis/status/transcription/projects/p/operations/1"
        return httpx.Response(
            200,
            json={
                "status": "succeeded",
                "payload": {"transcript": "hi", "language_code": "ko-KR", "result_location": None, "words": []},
                "result_location": "gs://b/t.json",
                "error": None,
            },
        )

    client = BackendClient("http://backend.test", transport=httpx.MockTransport(handler))
    provider = RemoteJobProvider(JobKind.TRANSCRIPTION, client)
    try:
        handle = await provider.start("gs://b/videos/k.webm", language_hint="ko-KR")
        status = await provider.get_status(handle)
    finally:
        await client.aclose()

    assert handle == "projects/p/operations/1"
    assert status.status is JobStatus.SUCCEEDED
    assert status.payload == TranscriptResult(transcript="hi", language_code="ko-KR")
    assert status.result_location == "gs://b/t.json"
