"""Re-hosting engine assets and writing the final generation rows.

Every step overwrites by key: blobs go to deterministic paths and slides are
upserted by ``(generation_id, slide_number)``. There is no "already
persisted" guard, so the callback path and the poll path may both run this
for the same generation.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from carousel.config import settings
from carousel.errors import GenerationNotFoundError, PersistenceError
from carousel.schemas import StatusSlide
from carousel.services import record_store
from carousel.services.generation_trace import log_generation_event
from carousel.services.record_store import SlideRow
from carousel.storage import get_blob_store

logger = logging.getLogger("carousel.jobs")

MAX_UPLOAD_WORKERS = 6


@dataclass
class PersistResult:
    slide_count: int
    video_url: str | None = None
    zip_url: str | None = None


def slide_storage_path(generation_id: str, slide_number: int) -> str:
    return f"{generation_id}/slide-{slide_number}.png"


def video_storage_path(generation_id: str) -> str:
    return f"{generation_id}/video.mp4"


def zip_storage_path(generation_id: str) -> str:
    return f"{generation_id}/slides.zip"


def rehost(bucket: str, path: str, source_url: str, default_content_type: str) -> str:
    """Copy ``source_url`` into the blob store; fall back to the source URL on failure."""
    try:
        return get_blob_store().put_from_url(bucket, path, source_url, default_content_type)
    except PersistenceError as exc:
        logger.warning("re-host of %s to %s/%s failed, keeping source URL: %s", source_url, bucket, path, exc)
        return source_url


def _slide_row(generation_id: str, index: int, slide: StatusSlide, config: list[dict]) -> SlideRow | None:
    # Text-baked render wins for static display; the clean render is the fallback.
    source = slide.processed_image_url or slide.image_url
    if not source:
        return None
    number = slide.slide_number or index + 1
    fallback = config[index] if index < len(config) and isinstance(config[index], dict) else {}
    return SlideRow(
        slide_number=number,
        headline=slide.headline or fallback.get("headline") or "",
        body_text=slide.body_text or fallback.get("bodyText") or "",
        image_url=rehost(settings.images_bucket, slide_storage_path(generation_id, number), source, "image/png"),
        original_url=slide.image_url or source,
    )


def build_slide_rows(generation_id: str, slides: list[StatusSlide]) -> list[SlideRow]:
    if not slides:
        return []
    config = record_store.get_slides_config(generation_id)
    with ThreadPoolExecutor(max_workers=min(MAX_UPLOAD_WORKERS, len(slides))) as executor:
        rows = list(
            executor.map(
                lambda pair: _slide_row(generation_id, pair[0], pair[1], config),
                enumerate(slides),
            )
        )
    skipped = [index + 1 for index, row in enumerate(rows) if row is None]
    if skipped:
        logger.warning("generation=%s slides without any image skipped: %s", generation_id, skipped)
    return [row for row in rows if row is not None]


def upsert_slides_with_retry(generation_id: str, rows: list[SlideRow]) -> int:
    """The first callback can race the dispatcher's insert, so a missing row is retried briefly."""
    attempts = max(1, settings.slide_upsert_attempts)
    for attempt in range(1, attempts + 1):
        try:
            return record_store.upsert_slides(generation_id, rows)
        except GenerationNotFoundError:
            if attempt >= attempts:
                raise
            logger.info(
                "generation=%s row not visible yet, retrying slide upsert (%s/%s)",
                generation_id,
                attempt,
                attempts,
            )
            time.sleep(settings.slide_upsert_retry_delay_seconds)
    return 0


def persist_generation(
    generation_id: str,
    slides: list[StatusSlide],
    *,
    video_url: str | None = None,
    zip_url: str | None = None,
    mark_complete: bool = True,
) -> PersistResult:
    """Re-host slides (and video/zip when given) and write the rows.

    ``video_url``/``zip_url`` are only written when known, so a late image
    persist never clears a video persisted by the poller.
    """
    rows = build_slide_rows(generation_id, slides)
    upsert_slides_with_retry(generation_id, rows)

    final_video = rehost(settings.videos_bucket, video_storage_path(generation_id), video_url, "video/mp4") if video_url else None
    final_zip = rehost(settings.images_bucket, zip_storage_path(generation_id), zip_url, "application/zip") if zip_url else None

    fields: dict[str, str] = {}
    if mark_complete:
        fields["status"] = "complete"
    if final_video:
        fields["video_url"] = final_video
    if final_zip:
        fields["zip_url"] = final_zip
    if fields and not record_store.update_generation(generation_id, **fields):
        raise GenerationNotFoundError(generation_id)

    log_generation_event(
        generation_id,
        "persist_generation_complete",
        slide_count=len(rows),
        video_url=final_video,
        zip_url=final_zip,
        marked_complete=mark_complete,
    )
    return PersistResult(slide_count=len(rows), video_url=final_video, zip_url=final_zip)


def persist_video(generation_id: str, video_url: str) -> str:
    final_video = rehost(settings.videos_bucket, video_storage_path(generation_id), video_url, "video/mp4")
    if not record_store.update_generation(generation_id, status="complete", video_url=final_video):
        raise GenerationNotFoundError(generation_id)
    log_generation_event(generation_id, "persist_video_complete", video_url=final_video)
    return final_video
