from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from carousel.db import Base


JsonColumn = JSON().with_variant(JSONB(), "postgresql")


class Generation(Base):
    __tablename__ = "generations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    generation_id: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
    hero_image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    art_style: Mapped[str] = mapped_column(String, nullable=False, default="")
    slide_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    output_type: Mapped[str] = mapped_column(String, nullable=False, default="static")
    status: Mapped[str] = mapped_column(String, nullable=False, default="generating")
    # Written by the callback path.
    status_details: Mapped[dict[str, Any] | None] = mapped_column(JsonColumn, nullable=True)
    # Written by the dispatcher and the video poller.
    video_execution: Mapped[dict[str, Any] | None] = mapped_column(JsonColumn, nullable=True)
    slides_config: Mapped[list[dict[str, Any]] | None] = mapped_column(JsonColumn, nullable=True)
    video_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    zip_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    slides: Mapped[list["Slide"]] = relationship(
        back_populates="generation",
        order_by="Slide.slide_number",
        cascade="all, delete-orphan",
    )


class Slide(Base):
    __tablename__ = "slides"
    __table_args__ = (UniqueConstraint("generation_id", "slide_number", name="uq_slides_generation_slide"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    generation_id: Mapped[str] = mapped_column(ForeignKey("generations.generation_id"), nullable=False, index=True)
    slide_number: Mapped[int] = mapped_column(Integer, nullable=False)
    headline: Mapped[str] = mapped_column(Text, nullable=False, default="")
    body_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    image_url: Mapped[str] = mapped_column(Text, nullable=False)
    original_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    generation: Mapped[Generation] = relationship(back_populates="slides")


class GenerationEvent(Base):
    __tablename__ = "generation_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Not a foreign key: events may be recorded before the generation row exists.
    generation_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    ts: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    stage: Mapped[str] = mapped_column(String, nullable=False)
    event_type: Mapped[str] = mapped_column(String, nullable=False)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    severity: Mapped[str] = mapped_column(String, nullable=False, default="info")
