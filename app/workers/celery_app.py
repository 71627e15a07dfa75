"""
Celery Application Configuration
"""
from celery import Celery
from celery.schedules import crontab

from app.core.config import settings

celery_app = Celery(
    "fleet_bot",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["app.workers.tasks"]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="Asia/Jerusalem",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

celery_app.conf.beat_schedule = {
    # שיחות שפג תוקפן נמחקות כאן ולא בזמן טיפול בהודעה
    "cleanup-expired-conversations": {
        "task": "app.workers.tasks.cleanup_expired_conversations",
        "schedule": float(settings.CONVERSATION_CLEANUP_INTERVAL_SECONDS),
    },
    "cleanup-old-webhook-events-daily": {
        "task": "app.workers.tasks.cleanup_old_webhook_events",
        "schedule": 86400.0,  # 24 hours
    },
    # תזכורות תחזוקה לשליחים: כל בוקר ב-08:00
    "send-maintenance-reminders-daily": {
        "task": "app.workers.tasks.send_maintenance_reminders",
        "schedule": crontab(hour="8", minute="0"),
    },
}
