"""Latest reconciled status per generation id.

Backed by the ``status_details`` and ``video_execution`` JSON columns of the
generation row. Read-modify-write without locks; last writer wins.
"""

from __future__ import annotations

import logging
from datetime import datetime

from pydantic import ValidationError as SchemaValidationError

from carousel.schemas import GenerationStatus, VideoClip, VideoExecution
from carousel.services import record_store
from carousel.services.status_merge import with_video_url

logger = logging.getLogger("carousel.jobs")


def get_status(generation_id: str) -> GenerationStatus | None:
    row = record_store.get_generation(generation_id)
    if row is None or not row.status_details:
        return None
    try:
        return GenerationStatus.model_validate(row.status_details)
    except SchemaValidationError:
        logger.warning("generation=%s stored status is unreadable", generation_id, exc_info=True)
        return None


def save_status(generation_id: str, status: GenerationStatus) -> None:
    record_store.ensure_generation(generation_id)
    record_store.update_generation(generation_id, status_details=status.to_wire())


def get_video_execution(generation_id: str) -> VideoExecution | None:
    row = record_store.get_generation(generation_id)
    if row is None or not row.video_execution:
        return None
    try:
        return VideoExecution.model_validate(row.video_execution)
    except SchemaValidationError:
        logger.warning("generation=%s stored video execution is unreadable", generation_id, exc_info=True)
        return None


def save_video_execution(generation_id: str, video: VideoExecution) -> None:
    record_store.ensure_generation(generation_id)
    record_store.update_generation(generation_id, video_execution=video.to_wire())


def mark_video_pending(
    generation_id: str,
    *,
    music_track_id: str | None = None,
    recipient_email: str | None = None,
) -> None:
    save_video_execution(
        generation_id,
        VideoExecution(
            pending=True,
            state="pending",
            last_checked=datetime.utcnow(),
            music_track_id=music_track_id,
            recipient_email=recipient_email,
        ),
    )


def mark_video_complete(generation_id: str, video_url: str, video_clips: list[VideoClip] | None = None) -> None:
    save_video_execution(
        generation_id,
        VideoExecution(
            pending=False,
            state="success",
            video_url=video_url,
            video_clips=video_clips or [],
            last_checked=datetime.utcnow(),
        ),
    )
    snapshot = get_status(generation_id)
    if snapshot is not None:
        save_status(generation_id, with_video_url(snapshot, video_url))


def mark_video_failed(generation_id: str, message: str) -> None:
    """Close the video sub-job as failed; the row follows the status pollers see."""
    save_video_execution(
        generation_id,
        VideoExecution(pending=False, state="error", error=message, last_checked=datetime.utcnow()),
    )
    record_store.update_generation(generation_id, status="error")


def record_error(generation_id: str, message: str) -> None:
    """Best-effort: store an ``error`` snapshot and flip the coarse status.

    Never raises; pollers must see something rather than silence.
    """
    try:
        save_status(generation_id, GenerationStatus(status="error", progress=0, error=message, message=message))
    except Exception:
        logger.error("generation=%s could not record error status", generation_id, exc_info=True)
    try:
        record_store.update_generation(generation_id, status="error")
    except Exception:
        logger.error("generation=%s could not mark row as error", generation_id, exc_info=True)
