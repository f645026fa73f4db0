"""Merging status fragments and composing the status shown to pollers.

Two dimensions are tracked independently:

* the image dimension is the stored ``GenerationStatus.status`` written by
  the dispatcher and the engine callbacks;
* the video dimension is ``VideoExecution.state`` written by the dispatcher
  and the video poller.

``compose_display_status`` folds both into the single status string clients
see, so ``animating`` after image completion never has to be stored.
"""

from __future__ import annotations

from dataclasses import dataclass

from carousel.schemas import GenerationStatus, StatusResults, VideoExecution

TERMINAL_STATUSES = frozenset({"complete", "error"})
VIDEO_OUTSTANDING_STATES = frozenset({"not_started", "pending", "running"})
ANIMATING_PROGRESS = 50


def is_terminal(status: str | None) -> bool:
    return status in TERMINAL_STATUSES


def video_outstanding(video: VideoExecution | None) -> bool:
    return video is not None and video.state in VIDEO_OUTSTANDING_STATES


def images_close_generation(video: VideoExecution | None) -> bool:
    """Whether persisting the images may mark the row complete.

    With a video requested, the row is closed by the video outcome instead.
    """
    return video is None or video.state in {"not_requested", "success"}


@dataclass
class MergeOutcome:
    snapshot: GenerationStatus
    accepted: bool
    reason: str | None = None


def merge_fragment(stored: GenerationStatus | None, fragment: GenerationStatus) -> MergeOutcome:
    """Replace the stored snapshot with a cumulative fragment.

    A non-terminal fragment never replaces a terminal snapshot. A video URL
    already merged by the poller survives a fragment that omits it.
    """
    if stored is None:
        return MergeOutcome(snapshot=fragment.model_copy(deep=True), accepted=True)

    if is_terminal(stored.status) and not is_terminal(fragment.status):
        return MergeOutcome(
            snapshot=stored,
            accepted=False,
            reason=f"{fragment.status} fragment after terminal {stored.status}",
        )

    merged = fragment.model_copy(deep=True)
    stored_video_url = stored.results.video_url if stored.results else None
    if stored_video_url:
        if merged.results is None:
            merged.results = StatusResults()
        if not merged.results.video_url:
            merged.results.video_url = stored_video_url
    return MergeOutcome(snapshot=merged, accepted=True)


def with_video_url(snapshot: GenerationStatus, video_url: str) -> GenerationStatus:
    updated = snapshot.model_copy(deep=True)
    if updated.results is None:
        updated.results = StatusResults()
    updated.results.video_url = video_url
    return updated


def compose_display_status(
    snapshot: GenerationStatus,
    video: VideoExecution | None,
    *,
    video_message: str | None = None,
) -> GenerationStatus:
    display = snapshot.model_copy(deep=True)
    if video is None or video.state == "not_requested":
        return display

    if video.state == "success" and video.video_url:
        display = with_video_url(display, video.video_url)

    if display.status == "error":
        return display

    if video.state == "error":
        display.status = "error"
        display.error = video.error or "Video generation failed"
        display.message = display.error
        return display

    if display.status == "complete" and video.state in VIDEO_OUTSTANDING_STATES:
        display.status = "animating"
        display.progress = ANIMATING_PROGRESS
        display.message = video_message or "Animating slides for video..."
    return display
