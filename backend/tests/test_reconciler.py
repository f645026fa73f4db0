"""Tests for the per-poll video reconciliation round."""

from types import SimpleNamespace

from carousel.errors import EngineApiError
from carousel.schemas import GenerationStatus, StatusResults, StatusSlide, VideoExecution
from carousel.services import reconciler, record_store, status_store
from carousel.services.callbacks import receive_callback
from carousel.services.reconciler import reconcile_generation
from conftest import make_execution


def _images_done(generation_id, video_state="pending"):
    record_store.create_generation(
        generation_id=generation_id,
        hero_image_url="https://cdn.test/hero.png",
        art_style="bold",
        slide_count=1,
        output_type="both",
    )
    status_store.save_status(
        generation_id,
        GenerationStatus(
            status="complete",
            progress=100,
            results=StatusResults(slides=[StatusSlide(image_url="https://engine.test/1.png")]),
        ),
    )
    status_store.save_video_execution(
        generation_id,
        VideoExecution(pending=video_state == "pending", state=video_state),
    )


def test_execution_not_in_listing_stays_pending_without_mutation(fake_engine):
    _images_done("gen_wait")
    before = record_store.get_generation("gen_wait").video_execution
    fake_engine.executions = [make_execution(f"gen_other_{n}") for n in range(10)]

    status = reconcile_generation("gen_wait")

    assert status.status == "animating"
    assert record_store.get_generation("gen_wait").video_execution == before


def test_running_execution_shows_animating(fake_engine):
    _images_done("gen_run")
    fake_engine.executions = [make_execution("gen_run", "running")]

    status = reconcile_generation("gen_run")

    assert status.status == "animating"
    assert status_store.get_video_execution("gen_run").state == "pending"


def test_successful_execution_completes_and_persists_video(fake_engine, blob_store):
    _images_done("gen_ok")
    fake_engine.executions = [make_execution("gen_ok", "success", video_url="https://engine.test/v.mp4")]

    status = reconcile_generation("gen_ok")

    assert status.status == "complete"
    assert status.results.video_url == "https://engine.test/v.mp4"
    video = status_store.get_video_execution("gen_ok")
    assert video.state == "success" and not video.pending
    row = record_store.get_generation("gen_ok")
    assert row.status == "complete"
    assert row.video_url == "https://blobs.test/carousel-videos/gen_ok/video.mp4"
    assert ("carousel-videos", "gen_ok/video.mp4") in blob_store.objects


def test_failed_execution_marks_video_error(fake_engine):
    _images_done("gen_bad")
    fake_engine.executions = [make_execution("gen_bad", "crashed")]

    status = reconcile_generation("gen_bad")

    assert status.status == "error"
    assert status_store.get_video_execution("gen_bad").state == "error"
    assert record_store.get_generation("gen_bad").status == "error"


def test_listing_failure_is_transient(fake_engine):
    _images_done("gen_down")
    fake_engine.list_error = EngineApiError("ENGINE_API_KEY not configured")

    status = reconcile_generation("gen_down")

    assert status.status == "animating"
    assert status_store.get_video_execution("gen_down").pending


def test_finished_video_is_not_polled_again(fake_engine):
    _images_done("gen_done", video_state="success")

    reconcile_generation("gen_done")

    assert fake_engine.list_calls == 0


def test_unknown_id_falls_back_to_engine(fake_engine):
    fake_engine.remote_status = {"status": "generating", "progress": 30}

    status = reconcile_generation("gen_remote")

    assert status.status == "generating"
    assert status.progress == 30


def test_unknown_everywhere_is_none():
    assert reconcile_generation("gen_nowhere") is None


def test_video_crash_after_images_persisted_closes_row(fake_engine):
    record_store.create_generation(
        generation_id="gen_crash",
        hero_image_url="https://cdn.test/hero.png",
        art_style="bold",
        slide_count=1,
        output_type="video",
        video_execution=VideoExecution(state="not_started").to_wire(),
    )
    receive_callback(
        "gen_crash",
        GenerationStatus.model_validate(
            {"status": "complete", "progress": 100, "results": {"slides": [{"imageUrl": "https://engine.test/1.png"}]}}
        ),
    )
    assert record_store.get_generation("gen_crash").status == "generating"
    fake_engine.executions = [make_execution("gen_crash", "crashed")]

    status = reconcile_generation("gen_crash")

    assert status.status == "error"
    assert record_store.get_generation("gen_crash").status == "error"
    assert len(record_store.list_slides("gen_crash")) == 1


def test_failed_persist_enqueue_is_retried_on_next_poll(fake_engine, monkeypatch):
    _images_done("gen_broker")
    fake_engine.executions = [make_execution("gen_broker", "success", video_url="https://engine.test/v.mp4")]

    def _broker_down(*args, **kwargs):
        raise ConnectionError("broker unreachable")

    real_tasks = reconciler.tasks
    monkeypatch.setattr(
        reconciler,
        "tasks",
        SimpleNamespace(persist_video_asset=SimpleNamespace(delay=_broker_down)),
    )

    status = reconcile_generation("gen_broker")

    assert status.status == "animating"
    assert status_store.get_video_execution("gen_broker").pending
    assert record_store.get_generation("gen_broker").video_url is None

    monkeypatch.setattr(reconciler, "tasks", real_tasks)
    status = reconcile_generation("gen_broker")

    assert status.status == "complete"
    assert record_store.get_generation("gen_broker").video_url == "https://blobs.test/carousel-videos/gen_broker/video.mp4"
