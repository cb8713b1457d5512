"""In-memory interview store. Keyed by interview ID, in creation order."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from services.pipeline import InterviewPipeline

MAX_FINISHED_INTERVIEWS = 100

interviews: dict[str, InterviewPipeline] = {}


def prune_finished(limit: int | None = None) -> list[str]:
    """Drop the oldest done/failed interviews beyond `limit`. Returns the evicted IDs."""
    if limit is None:
        limit = MAX_FINISHED_INTERVIEWS
    finished = [interview_id for interview_id, pipeline in interviews.items() if pipeline.phase.is_terminal]
    evicted = finished[: max(0, len(finished) - limit)]
    for interview_id in evicted:
        del interviews[interview_id]
    return evicted
