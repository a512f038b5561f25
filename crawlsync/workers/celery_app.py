from celery import Celery
from celery.schedules import crontab

from crawlsync.config import settings

celery = Celery(
    "crawlsync",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    beat_schedule={
        "sync-all-sources": {
            "task": "crawlsync.workers.sync_tasks.sync_all_sources",
            "schedule": crontab(minute=f"*/{settings.sync_schedule_minutes}"),
        },
    },
)

celery.autodiscover_tasks(["crawlsync.workers"], related_name="sync_tasks")
