"""Tests for the interview routes and the events WebSocket, with a fake capture device."""

from __future__ import annotations

import asyncio
from unittest.mock import patch

import httpx
import pytest
from fastapi.testclient import TestClient

from app.main import app
from fakes import FakeDevice, fake_providers, no_sleep
from models.errors import CaptureError
from models.upload import UploadStrategy
from services.dispatcher import JobDispatcher
from services.events_hub import events_hub
from services.pipeline import InterviewPipeline
from services.poller import Poller
from services.store import interviews
from services.upload import UploadCoordinator


class StoreUnderKey:
    strategy = UploadStrategy.PRIMARY

    async def upload(self, data: bytes, storage_key: str, content_type: str) -> str:
        return storage_key


def _factory(device: FakeDevice | None = None):
    def create(candidate: str | None) -> InterviewPipeline:
        providers = fake_providers()
        return InterviewPipeline(
            device=device or FakeDevice(),
            uploader=UploadCoordinator([StoreUnderKey()]),
            dispatcher=JobDispatcher(providers, bucket_name="mockview-test"),
            poller=Poller(providers, sleep=no_sleep),
            candidate=candidate,
            chunk_seconds=0.01,
        )

    return create


@pytest.fixture(autouse=True)
def clear_interviews() -> None:
    """Isolate tests by clearing the in-memory interview store."""
    interviews.clear()
    yield
    interviews.clear()


def _client() -> httpx.AsyncClient:
    transport = httpx.ASGITransport(app=app)
    return httpx.AsyncClient(transport=transport, base_url="http://test")


@pytest.mark.anyio
async def test_interview_runs_to_done() -> None:
    with patch("routes.interviews.create_pipeline", _factory()):
        async with _client() as client:
            created = await client.post("/api/interviews", json={"candidate": "Kim"})
            assert created.status_code == 201
            body = created.json()
            interview_id = body["interview_id"]
            assert body["phase"] == "recording"
            assert body["candidate"] == "Kim"
            assert interview_id in interviews

            await asyncio.sleep(0.03)
            stopped = await client.post(f"/api/interviews/{interview_id}/stop")
            assert stopped.status_code == 200
            assert stopped.json()["phase"] in ("uploading", "analyzing", "done")

            await asyncio.wait_for(interviews[interview_id].wait(), timeout=5)
            fetched = await client.get(f"/api/interviews/{interview_id}")

    assert fetched.status_code == 200
    result = fetched.json()
    assert result["phase"] == "done"
    assert result["storage_key"].startswith("videos/interview-")
    assert result["report"]["transcription"]["transcript"] == "hello there"


@pytest.mark.anyio
async def test_permission_denied_is_reported_as_failed() -> None:
    device = FakeDevice(open_error=CaptureError("denied", reason=CaptureError.PERMISSION_DENIED))
    with patch("routes.interviews.create_pipeline", _factory(device)):
        async with _client() as client:
            response = await client.post("/api/interviews", json={})
    assert response.status_code == 201
    body = response.json()
    assert body["phase"] == "failed"
    assert body["error"]["kind"] == "capture"
    assert body["error"]["reason"] == "permission_denied"


@pytest.mark.anyio
async def test_stop_outside_recording_is_409() -> None:
    device = FakeDevice(open_error=CaptureError("no camera"))
    with patch("routes.interviews.create_pipeline", _factory(device)):
        async with _client() as client:
            created = await client.post("/api/interviews", json={})
            response = await client.post(f"/api/interviews/{created.json()['interview_id']}/stop")
    assert response.status_code == 409


@pytest.mark.anyio
async def test_reset_returns_to_idle() -> None:
    device = FakeDevice()
    with patch("routes.interviews.create_pipeline", _factory(device)):
        async with _client() as client:
            created = await client.post("/api/interviews", json={})
            response = await client.post(f"/api/interviews/{created.json()['interview_id']}/reset")
    assert response.status_code == 200
    assert response.json()["phase"] == "idle"
    assert device.closed == 1


@pytest.mark.anyio
async def test_reset_drops_event_history_of_the_previous_run() -> None:
    with patch("routes.interviews.create_pipeline", _factory()):
        async with _client() as client:
            created = await client.post("/api/interviews", json={})
            interview_id = created.json()["interview_id"]
            await asyncio.sleep(0.02)
            await client.post(f"/api/interviews/{interview_id}/reset")
            await asyncio.sleep(0)

    queue = await events_hub.subscribe(interview_id)
    replayed = [queue.get_nowait() for _ in range(queue.qsize())]
    await events_hub.unsubscribe(interview_id, queue)
    events_hub.forget(interview_id)
    assert replayed == [{"type": "phase", "phase": "idle"}]


@pytest.mark.anyio
async def test_oldest_finished_interviews_are_evicted() -> None:
    device = FakeDevice(open_error=CaptureError("no camera"))
    with patch("routes.interviews.create_pipeline", _factory(device)), patch("services.store.MAX_FINISHED_INTERVIEWS", 1):
        async with _client() as client:
            first = (await client.post("/api/interviews", json={})).json()["interview_id"]
            second = (await client.post("/api/interviews", json={})).json()["interview_id"]
            third = (await client.post("/api/interviews", json={})).json()["interview_id"]
            assert (await client.get(f"/api/interviews/{first}")).status_code == 404

    assert first not in interviews
    assert set(interviews) == {second, third}
    queue = await events_hub.subscribe(first)
    assert queue.empty()
    await events_hub.unsubscribe(first, queue)
    events_hub.forget(second)
    events_hub.forget(third)


@pytest.mark.anyio
async def test_unknown_interview_is_404() -> None:
    async with _client() as client:
        assert (await client.get("/api/interviews/nope")).status_code == 404
        assert (await client.post("/api/interviews/nope/stop")).status_code == 404
        assert (await client.post("/api/interviews/nope/reset")).status_code == 404


def test_events_websocket_replays_history() -> None:
    asyncio.run(events_hub.publish("ws-interview", {"type": "phase", "phase": "uploading"}))
    try:
        with TestClient(app) as client:
            with client.websocket_connect("/api/ws/interviews/ws-interview/events") as ws:
                assert ws.receive_json() == {"type": "phase", "phase": "uploading"}
    finally:
        events_hub.forget("ws-interview")
