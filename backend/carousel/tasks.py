"""Background work that must outlive the request that queued it.

Each task retries a bounded number of times and, on final failure, records
the outcome in the status store instead of dropping it.
"""

from __future__ import annotations

from carousel.celery_app import celery_app
from carousel.config import settings
from carousel.errors import PersistenceError, UpstreamDispatchError
from carousel.schemas import GenerationStatus
from carousel.services import engine_client, status_store
from carousel.services.generation_trace import log_generation_event
from carousel.services.persistence import persist_generation, persist_video


def _can_retry(task) -> bool:
    return task.request.retries < settings.task_max_retries


@celery_app.task(name="carousel.tasks.start_video_job", bind=True)
def start_video_job(self, generation_id: str, payload: dict):
    try:
        ack = engine_client.start_video_job(payload)
    except UpstreamDispatchError as exc:
        if _can_retry(self):
            log_generation_event(
                generation_id,
                "video_dispatch_retry",
                severity="warning",
                reason=str(exc),
                attempt=self.request.retries + 1,
            )
            raise self.retry(exc=exc, countdown=settings.task_retry_delay_seconds)
        log_generation_event(generation_id, "video_dispatch_failed", severity="error", reason=str(exc))
        status_store.mark_video_failed(generation_id, f"Video generation could not be started: {exc}")
        return {"success": False, "error": str(exc)}

    if ack.get("success") is False:
        reason = ack.get("error") or ack.get("message") or "Video workflow refused the job"
        log_generation_event(generation_id, "video_dispatch_refused", severity="error", reason=reason)
        status_store.mark_video_failed(generation_id, str(reason))
        return {"success": False, "error": str(reason)}

    log_generation_event(generation_id, "video_dispatch_acknowledged", slide_count=len(payload.get("slides") or []))
    return {"success": True}


@celery_app.task(name="carousel.tasks.persist_generation_assets", bind=True)
def persist_generation_assets(self, generation_id: str, status_payload: dict, mark_complete: bool = True):
    snapshot = GenerationStatus.model_validate(status_payload)
    results = snapshot.results
    try:
        result = persist_generation(
            generation_id,
            snapshot.slides,
            video_url=results.video_url if results else None,
            zip_url=results.zip_url if results else None,
            mark_complete=mark_complete,
        )
    except PersistenceError as exc:
        if _can_retry(self):
            raise self.retry(exc=exc, countdown=settings.task_retry_delay_seconds)
        log_generation_event(generation_id, "persist_generation_failed", severity="error", reason=str(exc))
        return {"success": False, "error": str(exc)}
    return {"success": True, "slide_count": result.slide_count}


@celery_app.task(name="carousel.tasks.persist_video_asset", bind=True)
def persist_video_asset(self, generation_id: str, video_url: str):
    try:
        final_url = persist_video(generation_id, video_url)
    except PersistenceError as exc:
        if _can_retry(self):
            raise self.retry(exc=exc, countdown=settings.task_retry_delay_seconds)
        log_generation_event(generation_id, "persist_video_failed", severity="error", reason=str(exc))
        return {"success": False, "error": str(exc)}
    return {"success": True, "video_url": final_url}
