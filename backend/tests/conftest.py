"""Pytest configuration and shared fixtures."""

import os
import tempfile
from pathlib import Path

import pytest

# Settings are read at import time, so the environment must be ready first.
_TMP_ROOT = Path(tempfile.mkdtemp(prefix="carousel-tests-"))
os.environ.setdefault("STORAGE_ROOT", str(_TMP_ROOT / "storage"))
os.environ.setdefault("DATABASE_URL", f"sqlite:///{(_TMP_ROOT / 'carousel.db').as_posix()}")
os.environ.setdefault("CELERY_TASK_ALWAYS_EAGER", "true")
os.environ.setdefault("TASK_MAX_RETRIES", "0")
os.environ.setdefault("SLIDE_UPSERT_RETRY_DELAY_SECONDS", "0")
os.environ.setdefault("ENGINE_API_KEY", "test-key")
os.environ.setdefault("PUBLIC_BASE_URL", "http://api.test")
os.environ.setdefault("APP_PUBLIC_URL", "http://app.test")

from carousel import storage  # noqa: E402
from carousel.db import Base, engine  # noqa: E402
from carousel.errors import EngineApiError, PersistenceError  # noqa: E402
from carousel.services import engine_client  # noqa: E402
from carousel.storage import BlobStore  # noqa: E402


class FakeBlobStore(BlobStore):
    """Records every write by key; ``failing_urls`` simulates fetch failures."""

    def __init__(self):
        self.objects: dict[tuple[str, str], bytes] = {}
        self.puts: list[tuple[str, str]] = []
        self.fetched: list[str] = []
        self.failing_urls: set[str] = set()

    def put_bytes(self, bucket, path, data, content_type):
        self.objects[(bucket, path)] = data
        self.puts.append((bucket, path))
        return f"https://blobs.test/{bucket}/{path}"

    def put_from_url(self, bucket, path, source_url, default_content_type):
        self.fetched.append(source_url)
        if source_url in self.failing_urls:
            raise PersistenceError(f"Failed to fetch {source_url}")
        return self.put_bytes(bucket, path, source_url.encode("utf-8"), default_content_type)


class FakeEngine:
    """Stands in for the workflow engine's webhooks and execution API."""

    def __init__(self):
        self.carousel_calls: list[dict] = []
        self.video_calls: list[dict] = []
        self.carousel_ack: dict = {"success": True, "message": "Workflow was started"}
        self.video_ack: dict = {"success": True}
        self.video_error: Exception | None = None
        self.executions: list[dict] = []
        self.list_calls = 0
        self.list_error: Exception | None = None
        self.remote_status: dict | None = None

    def start_carousel_job(self, payload):
        self.carousel_calls.append(payload)
        return self.carousel_ack

    def start_video_job(self, payload):
        self.video_calls.append(payload)
        if self.video_error is not None:
            raise self.video_error
        return self.video_ack

    def list_executions(self, workflow_id, limit):
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        return self.executions[:limit]

    def fetch_engine_status(self, generation_id):
        if self.remote_status is None:
            raise EngineApiError(f"Engine status lookup failed for {generation_id}")
        return self.remote_status


def make_execution(generation_id, status="running", *, video_url=None, nested_body=True, finished=False):
    """Execution record shaped like the engine's listing with ``includeData``."""
    webhook_json = {"body": {"generationId": generation_id}} if nested_body else {"generationId": generation_id}
    run_data = {"Video Generation Webhook": [{"data": {"main": [[{"json": webhook_json}]]}}]}
    if video_url is not None:
        run_data["Format Final Result"] = [
            {"data": {"main": [[{"json": {"success": True, "results": {"videoUrl": video_url}}}]]}}
        ]
    return {
        "id": f"exec-{generation_id}",
        "status": status,
        "finished": finished,
        "data": {"resultData": {"runData": run_data}},
    }


@pytest.fixture(autouse=True)
def database():
    from carousel import models  # noqa: F401

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield engine


@pytest.fixture(autouse=True)
def blob_store(monkeypatch):
    fake = FakeBlobStore()
    monkeypatch.setattr(storage, "_blob_store", fake)
    return fake


@pytest.fixture(autouse=True)
def fake_engine(monkeypatch):
    fake = FakeEngine()
    monkeypatch.setattr(engine_client, "start_carousel_job", fake.start_carousel_job)
    monkeypatch.setattr(engine_client, "start_video_job", fake.start_video_job)
    monkeypatch.setattr(engine_client, "list_executions", fake.list_executions)
    monkeypatch.setattr(engine_client, "fetch_engine_status", fake.fetch_engine_status)
    return fake


@pytest.fixture
def client():
    from fastapi.testclient import TestClient

    from carousel.main import app

    with TestClient(app) as test_client:
        yield test_client
