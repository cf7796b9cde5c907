from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging as celery_setup_logging

from bidbridge.config import settings

app = Celery(
    "bidbridge",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["bidbridge.tasks.notification_tasks"],
)

app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    task_ignore_result=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "bidbridge.tasks.notification_tasks.*": {"queue": "notifications"},
    },
    beat_schedule={
        "purge-expired-notifications": {
            "task": "bidbridge.tasks.notification_tasks.purge_expired_notifications",
            "schedule": crontab(hour=3, minute=0),
        },
    },
)


@celery_setup_logging.connect
def _configure_worker_logging(**kwargs):
    from bidbridge.common.logging import setup_logging

    setup_logging()
