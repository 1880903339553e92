from celery import Celery
from celery.schedules import crontab
from celery.signals import worker_init

from app.core.config import settings

celery_app = Celery(
    "approval_worker",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "app.workers.delivery_tasks",
        "app.workers.sla_tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    broker_connection_retry_on_startup=True,
)

celery_app.conf.beat_schedule = {
    "report-overdue-workflows-daily": {
        "task": "app.workers.sla_tasks.report_overdue_workflows",
        "schedule": crontab(hour=9, minute=0),
    },
}


@worker_init.connect
def register_worker_hooks(**kwargs):
    """Workers complete workflows too, so they need the same hooks as the API."""
    from app.services import hooks

    hooks.register_default_hooks()
