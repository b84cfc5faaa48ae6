from __future__ import annotations

from celery import Celery
from celery.schedules import crontab

from wellovis.core.config import settings

celery_app = Celery(
    "wellovis",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["wellovis.jobs.tasks"],
)

celery_app.conf.timezone = settings.timezone
celery_app.conf.broker_connection_retry_on_startup = True
celery_app.conf.beat_schedule = {
    "send-appointment-reminders": {
        "task": "jobs.send_appointment_reminders",
        "schedule": crontab(hour=9, minute=0),
    },
    "expire-stale-invitations": {
        "task": "jobs.expire_invitations",
        "schedule": crontab(minute=0),
    },
    "expire-waitlist-offers": {
        "task": "jobs.expire_waitlist_offers",
        "schedule": crontab(minute=30),
    },
}
