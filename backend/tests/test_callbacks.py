"""Tests for inbound engine fragments."""

from carousel.schemas import GenerationStatus, VideoExecution
from carousel.services import record_store, status_store
from carousel.services.callbacks import receive_callback


def _create(generation_id, output_type="static", video=None):
    record_store.create_generation(
        generation_id=generation_id,
        hero_image_url="https://cdn.test/hero.png",
        art_style="retro",
        slide_count=2,
        output_type=output_type,
        slides_config=[{"headline": "One", "bodyText": "First"}, {"headline": "Two", "bodyText": "Second"}],
        video_execution=(video or VideoExecution(state="not_requested")).to_wire(),
    )


def _fragment(status, slides=None, **fields):
    body = {"status": status, **fields}
    if slides is not None:
        body["results"] = {"slides": slides}
    return GenerationStatus.model_validate(body)


def test_late_progress_fragment_is_acknowledged_but_not_stored():
    _create("gen_cb1")
    receive_callback("gen_cb1", _fragment("complete", [{"imageUrl": "https://engine.test/1.png"}], progress=100))

    outcome = receive_callback("gen_cb1", _fragment("generating", progress=70))

    assert not outcome.accepted
    assert status_store.get_status("gen_cb1").status == "complete"


def test_second_callback_with_processed_image_wins(blob_store):
    _create("gen_cb2")
    receive_callback("gen_cb2", _fragment("complete", [{"slideNumber": 1, "imageUrl": "https://engine.test/clean.png"}]))
    receive_callback(
        "gen_cb2",
        _fragment(
            "complete",
            [
                {
                    "slideNumber": 1,
                    "imageUrl": "https://engine.test/clean.png",
                    "processedImageUrl": "https://engine.test/text.png",
                }
            ],
        ),
    )

    slides = record_store.list_slides("gen_cb2")
    assert len(slides) == 1
    assert blob_store.fetched[-1] == "https://engine.test/text.png"
    assert slides[0].original_url == "https://engine.test/clean.png"
    assert slides[0].headline == "One"


def test_complete_callback_persists_synchronously():
    _create("gen_cb3")

    outcome = receive_callback(
        "gen_cb3",
        _fragment("complete", [{"imageUrl": "https://engine.test/1.png"}, {"imageUrl": "https://engine.test/2.png"}]),
    )

    assert outcome.persisted
    assert record_store.get_generation("gen_cb3").status == "complete"
    assert [row.slide_number for row in record_store.list_slides("gen_cb3")] == [1, 2]


def test_complete_callback_starts_video_not_yet_started(fake_engine):
    _create("gen_cb4", output_type="video", video=VideoExecution(state="not_started", music_track_id="epic-1"))

    receive_callback("gen_cb4", _fragment("complete", [{"imageUrl": "https://engine.test/1.png"}]))

    assert len(fake_engine.video_calls) == 1
    assert fake_engine.video_calls[0]["musicTrackId"] == "epic-1"
    video = status_store.get_video_execution("gen_cb4")
    assert video.pending and video.state == "pending"
    assert record_store.get_generation("gen_cb4").status == "generating"


def test_video_not_restarted_once_pending(fake_engine):
    _create("gen_cb5", output_type="video", video=VideoExecution(pending=True, state="pending"))

    receive_callback("gen_cb5", _fragment("complete", [{"imageUrl": "https://engine.test/1.png"}]))

    assert fake_engine.video_calls == []


def test_error_fragment_marks_row_error():
    _create("gen_cb6")

    receive_callback("gen_cb6", _fragment("error", error="Image model timed out"))

    assert record_store.get_generation("gen_cb6").status == "error"
    assert status_store.get_status("gen_cb6").error == "Image model timed out"


def test_persistence_failure_does_not_fail_callback(monkeypatch):
    from carousel.errors import PersistenceError
    from carousel.services import callbacks

    def _boom(*args, **kwargs):
        raise PersistenceError("database unavailable")

    monkeypatch.setattr(callbacks, "persist_generation", _boom)
    _create("gen_cb7")

    outcome = receive_callback("gen_cb7", _fragment("complete", [{"imageUrl": "https://engine.test/1.png"}]))

    assert outcome.accepted
    assert not outcome.persisted


def test_complete_callback_keeps_failed_video_row_in_error():
    _create("gen_cb_vfail", output_type="both", video=VideoExecution(state="error", error="render crashed"))
    record_store.update_generation("gen_cb_vfail", status="error")

    outcome = receive_callback("gen_cb_vfail", _fragment("complete", [{"imageUrl": "https://engine.test/1.png"}]))

    assert outcome.persisted
    assert len(record_store.list_slides("gen_cb_vfail")) == 1
    assert record_store.get_generation("gen_cb_vfail").status == "error"
