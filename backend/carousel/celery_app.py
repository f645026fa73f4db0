from celery import Celery

from carousel.config import settings

celery_app = Celery("carousel", broker=settings.redis_url, backend=settings.redis_url, include=["carousel.tasks"])
celery_app.conf.update(
    task_track_started=True,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    task_always_eager=settings.celery_task_always_eager,
    task_acks_late=True,
)
