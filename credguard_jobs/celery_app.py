from __future__ import annotations

from celery import Celery

from credguard_jobs.config import settings

celery_app = Celery(
    "credguard",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["credguard_jobs.tasks"],
)

celery_app.conf.timezone = settings.timezone
celery_app.conf.broker_connection_retry_on_startup = True
celery_app.conf.beat_schedule = {
    "reconcile-terminations": {
        "task": "credguard.reconcile_terminations",
        "schedule": float(settings.reconcile_interval_seconds),
    },
    "expire-blacklist-entries": {
        "task": "credguard.expire_blacklist_entries",
        "schedule": float(settings.blacklist_expiry_interval_seconds),
    },
}
