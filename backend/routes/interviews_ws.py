from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from services.events_hub import events_hub

router = APIRouter(tags=["interviews"])
logger = logging.getLogger(__name__)


@router.websocket("/ws/interviews/{interview_id}/events")
async def ws_interview_events(websocket: WebSocket, interview_id: str) -> None:
    """
    Stream pipeline events for one interview to the frontend.

    Payload schema:
      {"type": "phase", "phase": str}
      {"type": "report", "report": {...}}
      {"type": "error", "kind": str, "category": str, "detail": str}
    """
    logger.info("[interviews_ws] Client connecting for interview_id=%r", interview_id)
    try:
        await websocket.accept()
    except Exception as e:  # noqa: BLE001
        logger.warning("[interviews_ws] accept() failed interview_id=%r: %s", interview_id, e)
        return
    q = await events_hub.subscribe(interview_id)
    logger.info("[interviews_ws] Subscribed interview_id=%r", interview_id)

    async def forward() -> None:
        while True:
            payload: dict[str, Any] = await q.get()
            logger.debug("[interviews_ws] Sending %s event for interview=%s", payload.get("type"), interview_id)
            await websocket.send_json(payload)

    sender = asyncio.create_task(forward())
    try:
        # Clients only listen; reading here is how we notice the disconnect.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return
    finally:
        sender.cancel()
        with suppress(asyncio.CancelledError, WebSocketDisconnect, RuntimeError):
            await sender
        await events_hub.unsubscribe(interview_id, q)
