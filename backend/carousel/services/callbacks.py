"""Inbound status fragments posted by the workflow engine.

Fragments are cumulative, so each accepted one replaces the stored snapshot.
Delivery is at-least-once and unordered; the merge guard keeps a late
progress fragment from undoing a terminal state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from carousel.errors import PersistenceError
from carousel.schemas import GenerationStatus
from carousel.services import record_store, status_store
from carousel.services.generation_trace import log_generation_event
from carousel.services.persistence import persist_generation
from carousel.services.status_merge import images_close_generation, merge_fragment
from carousel.services.video_dispatch import queue_video_job

logger = logging.getLogger("carousel.jobs")


@dataclass
class CallbackOutcome:
    accepted: bool
    snapshot: GenerationStatus
    reason: str | None = None
    persisted: bool = False


def _persist_images(generation_id: str, snapshot: GenerationStatus) -> bool:
    video = status_store.get_video_execution(generation_id)
    if video is not None and video.state == "not_started":
        queue_video_job(
            generation_id,
            snapshot.slides,
            music_track_id=video.music_track_id,
            recipient_email=video.recipient_email,
        )
        video = status_store.get_video_execution(generation_id)

    results = snapshot.results
    try:
        persist_generation(
            generation_id,
            snapshot.slides,
            video_url=results.video_url if results else None,
            zip_url=results.zip_url if results else None,
            mark_complete=images_close_generation(video),
        )
    except PersistenceError as exc:
        log_generation_event(generation_id, "callback_persist_failed", severity="error", reason=str(exc))
        return False
    return True


def receive_callback(generation_id: str, fragment: GenerationStatus) -> CallbackOutcome:
    stored = status_store.get_status(generation_id)
    outcome = merge_fragment(stored, fragment)
    if not outcome.accepted:
        log_generation_event(
            generation_id,
            "callback_rejected",
            severity="warning",
            reason=outcome.reason,
            fragment_status=fragment.status,
        )
        return CallbackOutcome(accepted=False, snapshot=outcome.snapshot, reason=outcome.reason)

    status_store.save_status(generation_id, outcome.snapshot)
    log_generation_event(
        generation_id,
        "callback_received",
        status=outcome.snapshot.status,
        progress=outcome.snapshot.progress,
        slide_count=len(outcome.snapshot.slides),
    )

    persisted = False
    if outcome.snapshot.status == "complete" and outcome.snapshot.slides:
        persisted = _persist_images(generation_id, outcome.snapshot)
    elif outcome.snapshot.status == "error":
        try:
            record_store.update_generation(generation_id, status="error")
        except PersistenceError:
            logger.error("generation=%s could not mark row as error", generation_id, exc_info=True)

    return CallbackOutcome(accepted=True, snapshot=outcome.snapshot, persisted=persisted)
