"""One reconciliation round per status poll.

The video job's completion is never pushed, so while it is outstanding each
poll looks up its engine execution and folds the result into the stored
state before the status is composed for the client.
"""

from __future__ import annotations

import logging

from pydantic import ValidationError as SchemaValidationError

from carousel import tasks
from carousel.errors import EngineApiError, ReconciliationAmbiguous, TerminalEngineError
from carousel.schemas import GenerationStatus
from carousel.services import engine_client, status_store
from carousel.services.execution_lookup import (
    ExecutionFinder,
    VideoPollResult,
    classify_execution,
    get_execution_finder,
)
from carousel.services.generation_trace import log_generation_event
from carousel.services.status_merge import compose_display_status

logger = logging.getLogger("carousel.jobs")


def poll_video_execution(generation_id: str, finder: ExecutionFinder | None = None) -> VideoPollResult:
    """Classify the video execution for ``generation_id`` and record terminal outcomes.

    Nothing is written for ``pending``/``running`` or when the engine API is
    unavailable.
    """
    finder = finder or get_execution_finder()
    try:
        execution = finder.find_execution_by_correlation_id(generation_id)
        result = classify_execution(execution)
    except ReconciliationAmbiguous as exc:
        logger.debug("generation=%s %s", generation_id, exc)
        return VideoPollResult(state="pending", message="Waiting for video workflow to start")
    except EngineApiError as exc:
        logger.warning("generation=%s execution lookup unavailable: %s", generation_id, exc)
        return VideoPollResult(state="running", message="Animating slides for video...")
    except TerminalEngineError as exc:
        status_store.mark_video_failed(generation_id, str(exc))
        log_generation_event(generation_id, "video_execution_failed", severity="error", reason=str(exc))
        return VideoPollResult(state="error", message=str(exc))

    if result.state == "success" and result.video_url:
        # Queue persistence before clearing ``pending`` so a failed enqueue is retried by the next poll.
        try:
            tasks.persist_video_asset.delay(generation_id, result.video_url)
        except Exception as exc:
            log_generation_event(generation_id, "persist_video_enqueue_failed", severity="warning", reason=str(exc))
            return VideoPollResult(state="running", message="Finalizing video...")
        status_store.mark_video_complete(generation_id, result.video_url, result.video_clips)
        log_generation_event(
            generation_id,
            "video_execution_complete",
            video_url=result.video_url,
            clip_count=len(result.video_clips),
        )
    return result


def _engine_fallback(generation_id: str) -> GenerationStatus | None:
    try:
        body = engine_client.fetch_engine_status(generation_id)
    except EngineApiError as exc:
        logger.info("generation=%s unknown locally and to the engine: %s", generation_id, exc)
        return None
    try:
        return GenerationStatus.model_validate(body)
    except SchemaValidationError:
        logger.warning("generation=%s engine status body is unreadable", generation_id, exc_info=True)
        return None


def reconcile_generation(generation_id: str, finder: ExecutionFinder | None = None) -> GenerationStatus | None:
    """Status to show the client, or None when the id is unknown everywhere."""
    snapshot = status_store.get_status(generation_id)
    if snapshot is None:
        return _engine_fallback(generation_id)

    video = status_store.get_video_execution(generation_id)
    if video is None or not video.pending or snapshot.status == "error":
        return compose_display_status(snapshot, video)

    result = poll_video_execution(generation_id, finder)
    if result.state in {"success", "error"}:
        snapshot = status_store.get_status(generation_id) or snapshot
        video = status_store.get_video_execution(generation_id)
    return compose_display_status(snapshot, video, video_message=result.message)
