"""Record store adapter for generation and slide rows.

Every write is a partial update keyed by ``generation_id`` (or by
``(generation_id, slide_number)`` for slides), so concurrent writers that
own different columns do not clobber each other.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import selectinload

from carousel.db import SessionLocal
from carousel.errors import GenerationNotFoundError, PersistenceError
from carousel.models import Generation, Slide

logger = logging.getLogger("carousel.jobs")

_UPDATABLE_FIELDS = {
    "hero_image_url",
    "art_style",
    "slide_count",
    "output_type",
    "status",
    "status_details",
    "video_execution",
    "slides_config",
    "video_url",
    "zip_url",
}


@dataclass
class SlideRow:
    slide_number: int
    headline: str
    body_text: str
    image_url: str
    original_url: str | None = None


def create_generation(
    *,
    generation_id: str,
    hero_image_url: str | None,
    art_style: str,
    slide_count: int,
    output_type: str,
    slides_config: list[dict[str, Any]] | None = None,
    video_execution: dict[str, Any] | None = None,
) -> None:
    """Insert the generation row, or fill its configuration if a status write got there first."""
    config = {
        "hero_image_url": hero_image_url,
        "art_style": art_style or "",
        "slide_count": slide_count,
        "output_type": output_type,
        "slides_config": slides_config or [],
    }
    for attempt in range(2):
        db = SessionLocal()
        try:
            row = db.scalar(select(Generation).where(Generation.generation_id == generation_id))
            if row is None:
                row = Generation(generation_id=generation_id, status="generating", **config)
                if video_execution is not None:
                    row.video_execution = video_execution
                db.add(row)
            else:
                for key, value in config.items():
                    setattr(row, key, value)
                if video_execution is not None and not row.video_execution:
                    row.video_execution = video_execution
                row.updated_at = datetime.utcnow()
            db.commit()
            return
        except IntegrityError:
            db.rollback()
            if attempt:
                raise PersistenceError(f"Could not create generation {generation_id}")
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError(f"Could not create generation {generation_id}: {exc}") from exc
        finally:
            db.close()


def ensure_generation(generation_id: str) -> None:
    """Make sure a row exists so status writes always land somewhere."""
    db = SessionLocal()
    try:
        exists = db.scalar(select(Generation.id).where(Generation.generation_id == generation_id))
        if exists is None:
            db.add(Generation(generation_id=generation_id, status="generating"))
            db.commit()
    except IntegrityError:
        # Someone else inserted it concurrently.
        db.rollback()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError(f"Could not ensure generation {generation_id}: {exc}") from exc
    finally:
        db.close()


def get_generation(generation_id: str) -> Generation | None:
    db = SessionLocal()
    try:
        return db.scalar(select(Generation).where(Generation.generation_id == generation_id))
    finally:
        db.close()


def update_generation(generation_id: str, **fields: Any) -> bool:
    """Partial-field update. Returns False when the row does not exist."""
    unknown = set(fields) - _UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown generation fields: {sorted(unknown)}")
    if not fields:
        return True
    db = SessionLocal()
    try:
        result = db.execute(
            update(Generation)
            .where(Generation.generation_id == generation_id)
            .values(**fields, updated_at=datetime.utcnow())
        )
        db.commit()
        return bool(result.rowcount)
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError(f"Could not update generation {generation_id}: {exc}") from exc
    finally:
        db.close()


def get_slides_config(generation_id: str) -> list[dict[str, Any]]:
    db = SessionLocal()
    try:
        value = db.scalar(select(Generation.slides_config).where(Generation.generation_id == generation_id))
        return list(value or [])
    finally:
        db.close()


def upsert_slides(generation_id: str, rows: list[SlideRow]) -> int:
    """Insert or overwrite slides keyed by ``(generation_id, slide_number)``.

    Raises :class:`GenerationNotFoundError` when the owning row is not visible yet.
    """
    if not rows:
        return 0
    for attempt in range(2):
        db = SessionLocal()
        try:
            exists = db.scalar(select(Generation.id).where(Generation.generation_id == generation_id))
            if exists is None:
                raise GenerationNotFoundError(generation_id)

            existing = {
                row.slide_number: row
                for row in db.scalars(select(Slide).where(Slide.generation_id == generation_id)).all()
            }
            now = datetime.utcnow()
            for item in rows:
                row = existing.get(item.slide_number)
                if row is None:
                    row = Slide(generation_id=generation_id, slide_number=item.slide_number, created_at=now)
                    existing[item.slide_number] = row
                row.headline = item.headline
                row.body_text = item.body_text
                row.image_url = item.image_url
                row.original_url = item.original_url
                row.updated_at = now
                db.add(row)
            db.commit()
            return len(rows)
        except IntegrityError:
            # A concurrent writer inserted the same slide; the second pass overwrites it.
            db.rollback()
            if attempt:
                raise PersistenceError(f"Slide upsert kept conflicting for {generation_id}")
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError(f"Slide upsert failed for {generation_id}: {exc}") from exc
        finally:
            db.close()
    return 0


def list_slides(generation_id: str) -> list[Slide]:
    db = SessionLocal()
    try:
        return db.scalars(
            select(Slide).where(Slide.generation_id == generation_id).order_by(Slide.slide_number.asc())
        ).all()
    finally:
        db.close()


def get_generation_with_slides(generation_id: str) -> Generation | None:
    db = SessionLocal()
    try:
        return db.scalar(
            select(Generation)
            .options(selectinload(Generation.slides))
            .where(Generation.generation_id == generation_id)
        )
    finally:
        db.close()


def list_generations(*, limit: int = 20, offset: int = 0, output_filter: str = "all") -> tuple[list[Generation], int]:
    """Completed generations, newest first, with their slides loaded."""
    conditions = [Generation.status == "complete"]
    if output_filter == "video":
        conditions.append(Generation.video_url.is_not(None))
    elif output_filter == "static":
        conditions.append(Generation.video_url.is_(None))

    db = SessionLocal()
    try:
        total = db.scalar(select(func.count()).select_from(Generation).where(*conditions)) or 0
        rows = db.scalars(
            select(Generation)
            .options(selectinload(Generation.slides))
            .where(*conditions)
            .order_by(Generation.created_at.desc(), Generation.id.desc())
            .offset(max(0, offset))
            .limit(max(1, limit))
        ).all()
        return list(rows), int(total)
    finally:
        db.close()
