from celery import Celery, signals

from taskflow.core.config import get_settings
from taskflow.core.logging_setup import setup_logging

settings = get_settings()

celery_app = Celery(
    "taskflow",
    broker=settings.broker_url,
    include=["taskflow.queues.processor", "taskflow.queues.scheduled"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_ignore_result=True,
    task_acks_late=True,
    task_default_queue=settings.queue_name,
    timezone="UTC",
    enable_utc=True,
    beat_schedule={
        "check-overdue-tasks": {
            "task": "check-overdue-tasks",
            "schedule": float(settings.overdue_check_interval_seconds),
            "options": {"queue": settings.queue_name},
        },
    },
)


@signals.setup_logging.connect
def configure_worker_logging(**kwargs):
    setup_logging(settings.log_level)
