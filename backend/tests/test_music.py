"""Tests for the music catalog."""

from carousel.services.music import MUSIC_TRACKS, get_music_url


def test_music_url_resolution():
    assert get_music_url("upbeat-1") == "http://app.test/music/energy-boost.mp3"
    assert get_music_url("missing") is None
    assert get_music_url(None) is None


def test_catalog_ids_are_unique():
    ids = [track.id for track in MUSIC_TRACKS]
    assert len(ids) == len(set(ids))
