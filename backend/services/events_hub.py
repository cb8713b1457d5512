from __future__ import annotations

import asyncio
import logging
from collections import defaultdict, deque
from typing import Any

from models.analysis import AnalysisReport
from models.errors import ErrorKind
from models.session import PipelinePhase

logger = logging.getLogger(__name__)

HISTORY_SIZE = 16


class PipelineEventHub:
    """
    In-memory pubsub for streaming pipeline events to WebSocket subscribers.

    Payloads are one of:
      {"type": "phase", "phase": "uploading"}
      {"type": "report", "report": {...}}
      {"type": "error", "kind": "upload", "category": "...", "detail": "..."}

    Recent events are kept per interview and replayed to late subscribers, so
    a client that connects mid-pipeline still learns the current phase.
    """

    def __init__(self, *, history_size: int = HISTORY_SIZE) -> None:
        self._lock = asyncio.Lock()
        self._subscribers: dict[str, set[asyncio.Queue[dict[str, Any]]]] = defaultdict(set)
        self._history: dict[str, deque[dict[str, Any]]] = defaultdict(lambda: deque(maxlen=history_size))

    async def subscribe(self, interview_id: str) -> asyncio.Queue[dict[str, Any]]:
        q: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=64)
        async with self._lock:
            for payload in self._history.get(interview_id, ()):
                q.put_nowait(payload)
            self._subscribers[interview_id].add(q)
        return q

    async def unsubscribe(self, interview_id: str, q: asyncio.Queue[dict[str, Any]]) -> None:
        async with self._lock:
            subs = self._subscribers.get(interview_id)
            if not subs:
                return
            subs.discard(q)
            if not subs:
                self._subscribers.pop(interview_id, None)

    async def publish(self, interview_id: str, payload: dict[str, Any]) -> None:
        async with self._lock:
            self._history[interview_id].append(payload)
            subs = list(self._subscribers.get(interview_id, set()))
        for q in subs:
            if q.full():
                try:
                    _ = q.get_nowait()
                except asyncio.QueueEmpty:
                    pass
            try:
                q.put_nowait(payload)
            except asyncio.QueueFull:
                # Raced between full-check and put; the subscriber is too slow anyway.
                pass

    def publish_nowait(self, interview_id: str, payload: dict[str, Any]) -> None:
        """
        Fire-and-forget publish for synchronous callers (pipeline callbacks).
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No running loop: nothing to deliver to; best-effort only.
            return
        loop.create_task(self.publish(interview_id, payload))

    def forget(self, interview_id: str) -> None:
        self._history.pop(interview_id, None)


class HubListener:
    """Pipeline listener that forwards every event to the hub under one interview id."""

    def __init__(self, interview_id: str, hub: PipelineEventHub) -> None:
        self._interview_id = interview_id
        self._hub = hub

    def on_phase_change(self, phase: PipelinePhase) -> None:
        self._hub.publish_nowait(self._interview_id, {"type": "phase", "phase": phase.value})

    def on_report(self, report: AnalysisReport) -> None:
        self._hub.publish_nowait(self._interview_id, {"type": "report", "report": report.to_dict()})

    def on_error(self, kind: ErrorKind, detail: dict[str, str]) -> None:
        self._hub.publish_nowait(self._interview_id, {"type": "error", **detail, "kind": kind.value})


events_hub = PipelineEventHub()
