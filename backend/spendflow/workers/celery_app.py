from celery import Celery
from celery.schedules import crontab

from spendflow.core.config import settings

celery_app = Celery(
    "spendflow_worker",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "spendflow.workers.escalation_tasks",
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
    "escalate-stalled-requests": {
        "task": "spendflow.workers.escalation_tasks.escalate_stalled_requests",
        "schedule": settings.ESCALATION_SWEEP_MINUTES * 60,
    },
    "expire-pre-approvals-daily": {
        "task": "spendflow.workers.escalation_tasks.expire_pre_approvals",
        "schedule": crontab(hour=0, minute=30),
    },
    "dispatch-notifications": {
        "task": "spendflow.workers.escalation_tasks.dispatch_notifications",
        "schedule": crontab(minute="*"),
    },
}
