from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


PROJECT_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_STORAGE_ROOT = PROJECT_ROOT / "storage"
DEFAULT_DB_PATH = DEFAULT_STORAGE_ROOT / "carousel.db"


class Settings(BaseSettings):
    app_name: str = "Carousel Generation API"
    api_prefix: str = "/api"

    storage_root: Path = DEFAULT_STORAGE_ROOT
    database_url: str = f"sqlite:///{DEFAULT_DB_PATH.as_posix()}"
    redis_url: str = "redis://localhost:6379/0"
    celery_task_always_eager: bool = False
    public_base_url: str = "http://localhost:8000"
    app_public_url: str = "http://localhost:3000"
    frontend_origin: str = "http://localhost:3000"

    # Workflow engine (n8n)
    engine_webhook_url: str = "http://localhost:5678/webhook"
    engine_api_url: str = "http://localhost:5678/api/v1"
    engine_api_key: str | None = None
    video_workflow_id: str = "0MpzxUS4blJI7vgm"
    video_webhook_node: str = "Video Generation Webhook"
    video_result_node: str = "Format Final Result"
    execution_scan_limit: int = 10
    primary_webhook_timeout_seconds: int = 600
    engine_request_timeout_seconds: int = 30

    # Blob storage: local | s3
    blob_backend: str = "local"
    images_bucket: str = "carousel-images"
    videos_bucket: str = "carousel-videos"
    asset_fetch_timeout_seconds: int = 120
    s3_endpoint: str | None = None
    s3_access_key: str | None = None
    s3_secret_key: str | None = None
    s3_region: str = "us-east-1"
    s3_public_base_url: str | None = None

    slide_upsert_attempts: int = 3
    slide_upsert_retry_delay_seconds: float = 1.0
    task_max_retries: int = 3
    task_retry_delay_seconds: int = 5
    video_slide_duration: float = 3
    video_transition_duration: float = 0.5

    log_level: str = "INFO"
    suppress_status_poll_access_logs: bool = True
    suppress_http_client_info_logs: bool = True
    persist_generation_events: bool = True
    log_preview_chars: int = 180
    generation_events_page_size: int = 400

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def files_root(self) -> Path:
        return self.storage_root / "files"


settings = Settings()

for folder in [
    settings.storage_root,
    settings.files_root,
]:
    folder.mkdir(parents=True, exist_ok=True)
