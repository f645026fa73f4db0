"""Per-generation trace: one log line on ``carousel.jobs`` plus a persisted event row.

The stage of an event is derived from its name, so call sites only name what
happened (``dispatch_failed``, ``video_execution_complete``, ...).
"""

from __future__ import annotations

import json
import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from carousel.config import settings
from carousel.db import SessionLocal
from carousel.models import GenerationEvent

logger = logging.getLogger("carousel.jobs")

_STAGE_KEYWORDS = (
    ("dispatch", ("dispatch",)),
    ("callback", ("callback", "fragment")),
    ("video", ("video", "execution")),
    ("persistence", ("persist", "upload")),
)


def event_stage(event_type: str) -> str:
    lower = str(event_type or "").lower()
    for stage, keywords in _STAGE_KEYWORDS:
        if any(keyword in lower for keyword in keywords):
            return stage
    return "generation"


def preview_text(text: str | None, limit: int | None = None) -> str:
    """Single-line, truncated text for logs. Keeps data URIs out of the trace."""
    raw = str(text or "").replace("\r", " ").replace("\n", " ").strip()
    cap = int(limit or settings.log_preview_chars)
    return raw if len(raw) <= cap else raw[:cap].rstrip() + " ..."


def log_generation_event(generation_id: str, event_type: str, *, severity: str = "info", **fields) -> None:
    """Never raises; a trace that cannot be written is only logged."""
    level = logging.WARNING if severity in {"warning", "error"} else logging.INFO
    details = " ".join(
        f"{key}={json.dumps(value, ensure_ascii=False, default=str)}"
        for key, value in fields.items()
        if value is not None
    )
    if details:
        logger.log(level, "generation=%s %s | %s", generation_id, event_type, details)
    else:
        logger.log(level, "generation=%s %s", generation_id, event_type)

    if not generation_id or not settings.persist_generation_events:
        return
    db = SessionLocal()
    try:
        db.add(
            GenerationEvent(
                generation_id=generation_id,
                ts=datetime.utcnow(),
                stage=event_stage(event_type),
                event_type=event_type,
                payload_json=json.dumps(fields, ensure_ascii=False, default=str),
                severity=severity,
            )
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.warning("generation=%s trace event %s not persisted", generation_id, event_type, exc_info=True)
    finally:
        db.close()
