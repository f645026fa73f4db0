from __future__ import annotations

import logging

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy import select
from sqlalchemy.orm import Session

from carousel.config import settings
from carousel.db import get_db, init_db
from carousel.errors import ValidationError
from carousel.models import Generation, GenerationEvent
from carousel.schemas import (
    CallbackAck,
    DispatchOut,
    GalleryFilter,
    GalleryPageOut,
    GenerateCarouselRequest,
    GenerationEventOut,
    GenerationOut,
    GenerationStatus,
    MusicTrackOut,
)
from carousel.services import record_store
from carousel.services.callbacks import receive_callback
from carousel.services.dispatcher import dispatch_generation
from carousel.services.music import MUSIC_TRACKS
from carousel.services.reconciler import reconcile_generation

logger = logging.getLogger("carousel")

app = FastAPI(title=settings.app_name)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_origin, "*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if settings.blob_backend == "local":
    app.mount("/files", StaticFiles(directory=settings.files_root), name="files")


class _AccessLogPathFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not settings.suppress_status_poll_access_logs:
            return True

        message = record.getMessage()
        if f'"GET {settings.api_prefix}/status/' in message:
            return False
        if f'"OPTIONS {settings.api_prefix}/status/' in message:
            return False
        return True


def _configure_runtime_logging() -> None:
    level = getattr(logging, str(settings.log_level).upper(), logging.INFO)
    logging.getLogger("carousel").setLevel(level)
    logging.getLogger("carousel.jobs").setLevel(level)
    logging.getLogger("carousel.engine").setLevel(level)
    logging.getLogger("carousel.storage").setLevel(level)

    if settings.suppress_http_client_info_logs:
        logging.getLogger("urllib3").setLevel(logging.WARNING)
        logging.getLogger("botocore").setLevel(logging.WARNING)

    access_logger = logging.getLogger("uvicorn.access")
    if settings.suppress_status_poll_access_logs and not any(
        isinstance(row, _AccessLogPathFilter) for row in access_logger.filters
    ):
        access_logger.addFilter(_AccessLogPathFilter())


@app.on_event("startup")
def on_startup():
    _configure_runtime_logging()
    init_db()


@app.exception_handler(ValidationError)
async def _validation_error_handler(request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"success": False, "error": str(exc)})


@app.exception_handler(RequestValidationError)
async def _request_validation_handler(request, exc: RequestValidationError):
    errors = exc.errors()
    detail = errors[0].get("msg") if errors else "Invalid request body"
    return JSONResponse(status_code=400, content={"success": False, "error": f"Invalid request: {detail}"})


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post(f"{settings.api_prefix}/generate-carousel", response_model=DispatchOut, response_model_exclude_none=True)
def generate_carousel(payload: GenerateCarouselRequest):
    result = dispatch_generation(payload)
    body = DispatchOut(
        success=result.ok,
        generation_id=result.generation_id,
        message=result.message,
        error=result.error,
    )
    if not result.ok:
        return JSONResponse(status_code=500, content=body.to_wire())
    return JSONResponse(content=body.to_wire())


@app.post(f"{settings.api_prefix}/status/{{generation_id}}", response_model=CallbackAck)
def post_status(generation_id: str, payload: GenerationStatus):
    outcome = receive_callback(generation_id, payload)
    return CallbackAck(success=True, accepted=outcome.accepted)


@app.get(f"{settings.api_prefix}/status/{{generation_id}}")
def get_status(generation_id: str):
    status = reconcile_generation(generation_id)
    if status is None:
        raise HTTPException(status_code=404, detail="Generation not found")
    return JSONResponse(content=status.to_wire())


@app.get(f"{settings.api_prefix}/status/{{generation_id}}/events", response_model=list[GenerationEventOut])
def get_generation_events(
    generation_id: str,
    limit: int = Query(default=200, ge=1, le=2000),
    db: Session = Depends(get_db),
):
    exists = db.scalar(select(Generation.id).where(Generation.generation_id == generation_id))
    if not exists:
        raise HTTPException(status_code=404, detail="Generation not found")

    rows = db.scalars(
        select(GenerationEvent)
        .where(GenerationEvent.generation_id == generation_id)
        .order_by(GenerationEvent.ts.asc(), GenerationEvent.id.asc())
        .limit(min(limit, settings.generation_events_page_size))
    ).all()
    return [GenerationEventOut.model_validate(row) for row in rows]


@app.get(f"{settings.api_prefix}/gallery")
def list_gallery(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    filter: GalleryFilter = Query(default="all"),
):
    rows, total = record_store.list_generations(limit=limit, offset=offset, output_filter=filter)
    page = GalleryPageOut(
        generations=[GenerationOut.model_validate(row) for row in rows],
        total=total,
        limit=limit,
        offset=offset,
        has_more=offset + len(rows) < total,
    )
    return JSONResponse(content=page.to_wire())


@app.get(f"{settings.api_prefix}/gallery/{{generation_id}}", response_model=GenerationOut)
def get_gallery_item(generation_id: str):
    row = record_store.get_generation_with_slides(generation_id)
    if not row or row.status != "complete":
        raise HTTPException(status_code=404, detail="Generation not found")
    return GenerationOut.model_validate(row)


@app.get(f"{settings.api_prefix}/music-tracks", response_model=list[MusicTrackOut], response_model_by_alias=True)
def list_music_tracks():
    return MUSIC_TRACKS
