"""Tests for the upload routes: signed write URL, proxied upload, object status."""

from datetime import datetime, timezone
from unittest.mock import patch

import httpx
import pytest

from app.main import app
from services.gcs import ObjectInfo


def _client() -> httpx.AsyncClient:
    transport = httpx.ASGITransport(app=app)
    return httpx.AsyncClient(transport=transport, base_url="http://test")


@pytest.mark.anyio
async def test_presigned_url_uses_requested_key() -> None:
    key = "videos/interview-1700000000000-abcdefghijkl.webm"
    with (
        patch("routes.upload.generate_signed_url", return_value="https://signed.example/put") as signer,
        patch.dict("os.environ", {"GCS_BUCKET": "mockview-test"}, clear=False),
    ):
        async with _client() as client:
            response = await client.post(
                "/api/upload/presigned-url",
                json={"file_name": "interview.webm", "file_type": "video/webm", "storage_key": key},
            )
    assert response.status_code == 200
    body = response.json()
    assert body == {
        "presigned_url": "https://signed.example/put",
        "storage_key": key,
        "bucket": "mockview-test",
        "expires_in": 3600,
    }
    args, kwargs = signer.call_args
    assert args == (key,)
    assert kwargs["method"] == "PUT"
    assert kwargs["content_type"] == "video/webm"


@pytest.mark.anyio
async def test_presigned_url_generates_key_when_missing() -> None:
    with patch("routes.upload.generate_signed_url", return_value="https://signed.example/put"):
        async with _client() as client:
            response = await client.post("/api/upload/presigned-url", json={"file_name": "a.webm"})
    assert response.status_code == 200
    assert response.json()["storage_key"].startswith("videos/interview-")


@pytest.mark.anyio
async def test_presigned_url_rejects_key_outside_prefix() -> None:
    with patch("routes.upload.generate_signed_url") as signer:
        async with _client() as client:
            response = await client.post("/api/upload/presigned-url", json={"storage_key": "reels/x.mp4"})
    assert response.status_code == 400
    signer.assert_not_called()


@pytest.mark.anyio
async def test_presigned_url_signer_failure_is_502() -> None:
    with patch("routes.upload.generate_signed_url", side_effect=RuntimeError("no signing key")):
        async with _client() as client:
            response = await client.post("/api/upload/presigned-url", json={})
    assert response.status_code == 502


@pytest.mark.anyio
async def test_direct_upload_writes_body_under_server_key() -> None:
    with patch("routes.upload.upload_blob") as upload:
        async with _client() as client:
            response = await client.post(
                "/api/upload/direct",
                content=b"webm-bytes",
                headers={"Content-Type": "video/webm"},
            )
    assert response.status_code == 200
    body = response.json()
    assert body["file_size"] == len(b"webm-bytes")
    assert body["storage_key"].startswith("videos/interview-")
    args, kwargs = upload.call_args
    assert args == (body["storage_key"], b"webm-bytes")
    assert kwargs["content_type"] == "video/webm"


@pytest.mark.anyio
async def test_direct_upload_rejects_empty_body() -> None:
    with patch("routes.upload.upload_blob") as upload:
        async with _client() as client:
            response = await client.post("/api/upload/direct", content=b"")
    assert response.status_code == 400
    upload.assert_not_called()


@pytest.mark.anyio
async def test_direct_upload_storage_failure_is_502() -> None:
    with patch("routes.upload.upload_blob", side_effect=RuntimeError("503 from GCS")):
        async with _client() as client:
            response = await client.post("/api/upload/direct", content=b"x")
    assert response.status_code == 502


@pytest.mark.anyio
async def test_status_reports_existing_object() -> None:
    updated = datetime(2024, 5, 1, tzinfo=timezone.utc)
    info = ObjectInfo(exists=True, size=42, last_modified=updated, content_type="video/webm")
    with patch("routes.upload.head_blob", return_value=info) as head:
        async with _client() as client:
            response = await client.get("/api/upload/status/videos/interview-1-abc.webm")
    assert response.status_code == 200
    body = response.json()
    assert body["exists"] is True
    assert body["file_size"] == 42
    assert datetime.fromisoformat(body["last_modified"]) == updated
    head.assert_called_once_with("videos/interview-1-abc.webm")


@pytest.mark.anyio
async def test_status_missing_object_is_not_an_error() -> None:
    with patch("routes.upload.head_blob", return_value=ObjectInfo(exists=False)):
        async with _client() as client:
            response = await client.get("/api/upload/status/videos/missing.webm")
    assert response.status_code == 200
    assert response.json()["exists"] is False
