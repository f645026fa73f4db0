"""Starts a carousel generation on the workflow engine.

The primary (image) job is called synchronously; the video job and asset
persistence are handed to Celery so the request returns as soon as the
engine acknowledges the images.
"""

from __future__ import annotations

import logging
import random
import string
import time
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError as SchemaValidationError

from carousel import tasks
from carousel.config import settings
from carousel.errors import PersistenceError, UpstreamDispatchError, ValidationError
from carousel.schemas import GenerateCarouselRequest, GenerationStatus, StatusResults, VideoExecution
from carousel.services import engine_client, record_store, status_store
from carousel.services.generation_trace import log_generation_event, preview_text
from carousel.services.persistence import persist_generation
from carousel.services.video_dispatch import queue_video_job
from carousel.storage import decode_data_uri, extension_for, get_blob_store, is_data_uri

logger = logging.getLogger("carousel.jobs")

_ID_ALPHABET = string.digits + string.ascii_lowercase


@dataclass
class DispatchResult:
    generation_id: str
    ok: bool
    error: str | None = None
    message: str | None = None


def new_generation_id() -> str:
    suffix = "".join(random.choices(_ID_ALPHABET, k=7))
    return f"gen_{int(time.time() * 1000)}_{suffix}"


def validate_request(req: GenerateCarouselRequest) -> None:
    if not req.hero_image:
        raise ValidationError("Hero image is required")
    if req.slide_count is None or req.slide_count < 1:
        raise ValidationError("slideCount must be at least 1")


def resolve_hero_image(generation_id: str, hero_image: str) -> str:
    """Upload an embedded ``data:`` hero image; plain URLs pass through."""
    if not is_data_uri(hero_image):
        return hero_image
    data, content_type = decode_data_uri(hero_image)
    path = f"{generation_id}/hero.{extension_for(content_type, 'png')}"
    return get_blob_store().put_bytes(settings.images_bucket, path, data, content_type)


def ack_results(ack: dict[str, Any]) -> StatusResults | None:
    """Slides carried by the acknowledgment, if the engine already finished them."""
    results = ack.get("results") if isinstance(ack.get("results"), dict) else {}
    slides = results.get("slides") or ack.get("slides")
    if not isinstance(slides, list) or not slides:
        return None
    try:
        return StatusResults.model_validate(
            {
                "slides": [slide for slide in slides if isinstance(slide, dict)],
                "videoUrl": results.get("videoUrl"),
                "zipUrl": results.get("zipUrl"),
            }
        )
    except SchemaValidationError:
        logger.warning("acknowledgment slides are malformed, waiting for callback", exc_info=True)
        return None


def _engine_payload(req: GenerateCarouselRequest, generation_id: str, hero_url: str) -> dict[str, Any]:
    payload = req.to_wire()
    payload["heroImage"] = hero_url
    payload["generationId"] = generation_id
    return payload


def _fail(generation_id: str, message: str) -> DispatchResult:
    status_store.record_error(generation_id, message)
    log_generation_event(generation_id, "dispatch_failed", severity="error", reason=message)
    return DispatchResult(generation_id=generation_id, ok=False, error=message)


def _queue_image_persistence(generation_id: str, snapshot: GenerationStatus, *, mark_complete: bool) -> None:
    try:
        tasks.persist_generation_assets.delay(generation_id, snapshot.to_wire(), mark_complete)
        return
    except Exception as exc:
        log_generation_event(generation_id, "persist_generation_enqueue_failed", severity="warning", reason=str(exc))
    # No broker: persist inline rather than lose the images.
    try:
        persist_generation(
            generation_id,
            snapshot.slides,
            video_url=snapshot.results.video_url,
            zip_url=snapshot.results.zip_url,
            mark_complete=mark_complete,
        )
    except PersistenceError as exc:
        log_generation_event(generation_id, "persist_generation_failed", severity="error", reason=str(exc))


def dispatch_generation(req: GenerateCarouselRequest) -> DispatchResult:
    """Start the image job and, when asked for, the follow-up video job.

    Raises :class:`ValidationError` for malformed requests. Every other
    failure is recorded against the generation id and returned as ``ok=False``.
    """
    generation_id = new_generation_id()
    validate_request(req)
    log_generation_event(
        generation_id,
        "dispatch_started",
        slide_count=req.slide_count,
        output_type=req.output_type,
        art_style=req.art_style,
        hero_preview=preview_text(req.hero_image, 48),
    )

    try:
        hero_url = resolve_hero_image(generation_id, req.hero_image)
    except PersistenceError as exc:
        logger.warning("generation=%s hero upload failed: %s", generation_id, exc)
        return _fail(generation_id, "Failed to upload hero image. Please try again.")

    try:
        record_store.create_generation(
            generation_id=generation_id,
            hero_image_url=hero_url,
            art_style=req.art_style,
            slide_count=req.slide_count,
            output_type=req.output_type,
            slides_config=[{"headline": slide.headline, "bodyText": slide.body_text} for slide in req.slides],
            video_execution=VideoExecution(
                state="not_started" if req.wants_video else "not_requested",
                music_track_id=req.music_track_id,
                recipient_email=req.recipient_email,
            ).to_wire(),
        )
        status_store.save_status(
            generation_id,
            GenerationStatus(status="analyzing", progress=5, message="Analyzing hero image..."),
        )
        status_store.save_status(
            generation_id,
            GenerationStatus(
                status="generating",
                progress=10,
                message="Generating slides...",
                current_slide=0,
                total_slides=req.slide_count,
            ),
        )
    except PersistenceError as exc:
        logger.error("generation=%s could not write initial records", generation_id, exc_info=True)
        return _fail(generation_id, str(exc))

    try:
        ack = engine_client.start_carousel_job(_engine_payload(req, generation_id, hero_url))
        if ack.get("success") is False:
            raise UpstreamDispatchError(str(ack.get("error") or ack.get("message") or "Generation failed"))
    except UpstreamDispatchError as exc:
        return _fail(generation_id, str(exc))

    results = ack_results(ack)
    if results is None:
        log_generation_event(generation_id, "dispatch_acknowledged", slides_in_ack=0)
        return DispatchResult(
            generation_id=generation_id,
            ok=True,
            message=ack.get("message") or "Carousel generation started",
        )

    snapshot = GenerationStatus(
        status="complete",
        progress=100,
        message="Carousel generated",
        current_slide=len(results.slides),
        total_slides=req.slide_count,
        results=results,
    )
    try:
        status_store.save_status(generation_id, snapshot)
    except PersistenceError as exc:
        return _fail(generation_id, str(exc))
    log_generation_event(generation_id, "dispatch_acknowledged", slides_in_ack=len(results.slides))

    if req.wants_video:
        queue_video_job(
            generation_id,
            results.slides,
            music_track_id=req.music_track_id,
            recipient_email=req.recipient_email,
        )
    # With a video requested, the video outcome closes the row.
    _queue_image_persistence(generation_id, snapshot, mark_complete=not req.wants_video)

    return DispatchResult(
        generation_id=generation_id,
        ok=True,
        message=ack.get("message") or "Carousel generated",
    )
