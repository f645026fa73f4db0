from __future__ import annotations

from carousel.config import settings
from carousel.schemas import MusicTrackOut

MUSIC_TRACKS: list[MusicTrackOut] = [
    MusicTrackOut(
        id="upbeat-1",
        name="Energy Boost",
        genre="Upbeat",
        duration="2:30",
        preview_url="/music/energy-boost-preview.mp3",
        full_url="/music/energy-boost.mp3",
    ),
    MusicTrackOut(
        id="corporate-1",
        name="Business Forward",
        genre="Corporate",
        duration="2:45",
        preview_url="/music/business-forward-preview.mp3",
        full_url="/music/business-forward.mp3",
    ),
    MusicTrackOut(
        id="chill-1",
        name="Smooth Vibes",
        genre="Chill",
        duration="3:00",
        preview_url="/music/smooth-vibes-preview.mp3",
        full_url="/music/smooth-vibes.mp3",
    ),
    MusicTrackOut(
        id="epic-1",
        name="Rise Up",
        genre="Epic",
        duration="2:15",
        preview_url="/music/rise-up-preview.mp3",
        full_url="/music/rise-up.mp3",
    ),
]


def get_music_url(track_id: str | None) -> str | None:
    """Absolute URL of a track, fetchable by the engine."""
    if not track_id:
        return None
    track = next((row for row in MUSIC_TRACKS if row.id == track_id), None)
    if track is None:
        return None
    if track.full_url.startswith(("http://", "https://")):
        return track.full_url
    return f"{settings.app_public_url.rstrip('/')}{track.full_url}"
