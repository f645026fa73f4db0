import json
from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


OutputType = Literal["static", "video", "both"]
StatusValue = Literal["pending", "analyzing", "generating", "animating", "complete", "error"]
VideoState = Literal["not_requested", "not_started", "pending", "running", "success", "error"]
GalleryFilter = Literal["all", "static", "video"]


class CamelModel(BaseModel):
    """Wire models use camelCase keys, Python code uses snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Generation request
# ---------------------------------------------------------------------------


class SlideInput(CamelModel):
    id: str | None = None
    slide_number: int
    headline: str = ""
    body_text: str = ""
    character_action: str | None = None


class Branding(CamelModel):
    text: str
    position: Literal["top", "bottom", "watermark"] = "bottom"


class GenerateCarouselRequest(CamelModel):
    # Presence of hero_image and slide_count is checked by the dispatcher so
    # that malformed requests answer 400 with a readable message.
    hero_image: str | None = None
    slide_count: int | None = None
    art_style: str = ""
    custom_style_prompt: str | None = None
    slides: list[SlideInput] = Field(default_factory=list)
    branding: Branding | None = None
    output_type: OutputType = "static"
    music_track_id: str | None = None
    recipient_email: str | None = None

    @property
    def wants_video(self) -> bool:
        return self.output_type in {"video", "both"}


class DispatchOut(CamelModel):
    success: bool
    generation_id: str
    message: str | None = None
    error: str | None = None


# ---------------------------------------------------------------------------
# Generation status (the snapshot exposed to pollers)
# ---------------------------------------------------------------------------


class StatusSlide(CamelModel):
    id: str | None = None
    slide_number: int | None = None
    image_url: str | None = None
    processed_image_url: str | None = None
    headline: str | None = None
    body_text: str | None = None


class StatusResults(CamelModel):
    slides: list[StatusSlide] = Field(default_factory=list)
    video_url: str | None = None
    zip_url: str | None = None

    @model_validator(mode="after")
    def _number_slides(self):
        for index, slide in enumerate(self.slides):
            if slide.slide_number is None:
                slide.slide_number = index + 1
            if not slide.id:
                slide.id = f"slide-{slide.slide_number}"
        return self


class GenerationStatus(CamelModel):
    status: StatusValue
    progress: int = 0
    message: str | None = None
    error: str | None = None
    current_slide: int | None = None
    total_slides: int | None = None
    results: StatusResults | None = None

    @field_validator("progress", mode="before")
    @classmethod
    def _clamp_progress(cls, value):
        if value is None:
            return 0
        return max(0, min(100, int(float(value))))

    @property
    def slides(self) -> list[StatusSlide]:
        return self.results.slides if self.results else []


class CallbackAck(BaseModel):
    success: bool
    accepted: bool = True


# ---------------------------------------------------------------------------
# Video sub-job
# ---------------------------------------------------------------------------


class VideoClip(CamelModel):
    slide_number: int
    video_url: str


class VideoExecution(CamelModel):
    pending: bool = False
    state: VideoState = "not_requested"
    video_url: str | None = None
    video_clips: list[VideoClip] = Field(default_factory=list)
    error: str | None = None
    last_checked: datetime | None = None
    # Options for starting the video job once images exist.
    music_track_id: str | None = None
    recipient_email: str | None = None


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------


class GenerationEventOut(BaseModel):
    id: int
    generation_id: str
    ts: datetime
    stage: str
    event_type: str
    payload: dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("payload_json", "payload"))
    severity: str = "info"

    model_config = ConfigDict(from_attributes=True)

    @field_validator("payload", mode="before")
    @classmethod
    def _decode_payload(cls, value):
        if isinstance(value, str):
            try:
                value = json.loads(value or "{}")
            except ValueError:
                return {}
        if value is None:
            return {}
        return value if isinstance(value, dict) else {"value": value}


class SlideOut(BaseModel):
    slide_number: int
    headline: str
    body_text: str
    image_url: str
    original_url: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class GenerationOut(BaseModel):
    generation_id: str
    hero_image_url: str | None = None
    art_style: str
    slide_count: int
    output_type: str
    status: str
    video_url: str | None = None
    zip_url: str | None = None
    created_at: datetime
    slides: list[SlideOut] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class GalleryPageOut(CamelModel):
    generations: list[GenerationOut] = Field(default_factory=list)
    total: int
    limit: int
    offset: int
    has_more: bool


class MusicTrackOut(CamelModel):
    id: str
    name: str
    genre: str
    duration: str
    preview_url: str
    full_url: str
