from __future__ import annotations

import logging
from typing import Any

from carousel import tasks
from carousel.config import settings
from carousel.schemas import StatusSlide
from carousel.services import status_store
from carousel.services.generation_trace import log_generation_event
from carousel.services.music import get_music_url

logger = logging.getLogger("carousel.jobs")


def build_video_payload(
    generation_id: str,
    slides: list[StatusSlide],
    *,
    music_track_id: str | None = None,
    recipient_email: str | None = None,
) -> dict[str, Any]:
    """Video job input. Clips animate the clean renders, never the text-baked ones."""
    payload: dict[str, Any] = {
        "generationId": generation_id,
        "slides": [
            {"slideNumber": slide.slide_number or index + 1, "imageUrl": slide.image_url}
            for index, slide in enumerate(slides)
            if slide.image_url
        ],
        "slideDuration": settings.video_slide_duration,
        "transitionDuration": settings.video_transition_duration,
    }
    if music_track_id:
        payload["musicTrackId"] = music_track_id
        music_url = get_music_url(music_track_id)
        if music_url:
            payload["musicUrl"] = music_url
    if recipient_email:
        payload["recipientEmail"] = recipient_email
    return payload


def queue_video_job(
    generation_id: str,
    slides: list[StatusSlide],
    *,
    music_track_id: str | None = None,
    recipient_email: str | None = None,
) -> bool:
    """Mark the video sub-job pending and hand it to the worker.

    Returns False (and records the video as failed) when no slide has a clean
    render to animate.
    """
    payload = build_video_payload(
        generation_id,
        slides,
        music_track_id=music_track_id,
        recipient_email=recipient_email,
    )
    if not payload["slides"]:
        log_generation_event(generation_id, "video_dispatch_skipped", severity="warning", reason="no slide images")
        status_store.mark_video_failed(generation_id, "No slide images available for video generation")
        return False

    status_store.mark_video_pending(
        generation_id,
        music_track_id=music_track_id,
        recipient_email=recipient_email,
    )
    try:
        tasks.start_video_job.delay(generation_id, payload)
    except Exception as exc:
        # Broker unreachable: nothing will ever start the job, so close it now.
        log_generation_event(generation_id, "video_dispatch_enqueue_failed", severity="error", reason=str(exc))
        status_store.mark_video_failed(generation_id, "Video generation could not be queued")
        return False
    log_generation_event(generation_id, "video_dispatch_queued", slide_count=len(payload["slides"]))
    return True
