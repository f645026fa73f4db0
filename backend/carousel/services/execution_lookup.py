"""Locating and classifying the engine execution of a video sub-job.

The engine cannot be queried by a caller-supplied field, so the generation
id (the correlation id) is recovered from each execution's recorded webhook
input. ``ExecutionFinder`` keeps that scan behind one seam; a direct lookup
can replace ``ExecutionListScanner`` without touching the reconciler.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from carousel.config import settings
from carousel.errors import ReconciliationAmbiguous, TerminalEngineError
from carousel.schemas import VideoClip
from carousel.services import engine_client

_ERROR_STATUSES = {"error", "crashed", "canceled"}
_RUNNING_STATUSES = {"waiting", "running"}


@dataclass
class VideoPollResult:
    state: Literal["pending", "running", "success", "error"]
    video_url: str | None = None
    video_clips: list[VideoClip] = field(default_factory=list)
    message: str | None = None


class ExecutionFinder(Protocol):
    def find_execution_by_correlation_id(self, correlation_id: str) -> dict[str, Any]:
        """Return the execution started for ``correlation_id``.

        Raises :class:`ReconciliationAmbiguous` when none is visible yet.
        """
        ...


def node_output_json(execution: dict[str, Any], node_name: str) -> dict[str, Any] | None:
    """First output item of ``node_name`` in the execution's run data."""
    run_data = ((execution.get("data") or {}).get("resultData") or {}).get("runData") or {}
    try:
        item = run_data[node_name][0]["data"]["main"][0][0]["json"]
    except (KeyError, IndexError, TypeError):
        return None
    return item if isinstance(item, dict) else None


def correlation_id_of(execution: dict[str, Any], webhook_node: str) -> str | None:
    payload = node_output_json(execution, webhook_node)
    if not payload:
        return None
    body = payload.get("body")
    if isinstance(body, dict) and body.get("generationId"):
        return str(body["generationId"])
    value = payload.get("generationId")
    return str(value) if value else None


class ExecutionListScanner:
    """Scans the most recent executions of the video workflow."""

    def __init__(self, *, workflow_id: str, webhook_node: str, limit: int):
        self.workflow_id = workflow_id
        self.webhook_node = webhook_node
        self.limit = limit

    def find_execution_by_correlation_id(self, correlation_id: str) -> dict[str, Any]:
        executions = engine_client.list_executions(self.workflow_id, self.limit)
        for execution in executions:
            if correlation_id_of(execution, self.webhook_node) == correlation_id:
                return execution
        raise ReconciliationAmbiguous(
            f"No execution for {correlation_id} among the last {len(executions)} executions"
        )


def get_execution_finder() -> ExecutionFinder:
    return ExecutionListScanner(
        workflow_id=settings.video_workflow_id,
        webhook_node=settings.video_webhook_node,
        limit=settings.execution_scan_limit,
    )


def _video_clips(results: dict[str, Any]) -> list[VideoClip]:
    clips: list[VideoClip] = []
    for clip in results.get("videoClips") or []:
        if not isinstance(clip, dict) or not clip.get("success") or not clip.get("videoUrl"):
            continue
        try:
            clips.append(VideoClip(slide_number=int(clip.get("slideNumber") or len(clips) + 1), video_url=clip["videoUrl"]))
        except (TypeError, ValueError):
            continue
    return clips


def classify_execution(execution: dict[str, Any], result_node: str | None = None) -> VideoPollResult:
    """Map an execution to a poll result.

    Raises :class:`TerminalEngineError` when the engine reports failure or a
    finished execution produced no video.
    """
    status = str(execution.get("status") or "").lower()
    if status in _ERROR_STATUSES:
        raise TerminalEngineError(f"Video workflow failed ({status})")

    if status == "success" or execution.get("finished"):
        output = node_output_json(execution, result_node or settings.video_result_node) or {}
        results = output.get("results") if isinstance(output.get("results"), dict) else {}
        clips = _video_clips(results)
        video_url = results.get("videoUrl") or results.get("mergedVideoUrl") or (clips[0].video_url if clips else None)
        if not video_url:
            raise TerminalEngineError("Video workflow finished without a video URL")
        return VideoPollResult(state="success", video_url=video_url, video_clips=clips, message=output.get("message"))

    if status in _RUNNING_STATUSES:
        return VideoPollResult(state="running", message="Video generation in progress")
    return VideoPollResult(state="pending", message="Video workflow pending")
