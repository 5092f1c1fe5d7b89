from __future__ import annotations

from typing import Any

from celery.utils.log import get_task_logger

from credguard.db.session import SessionLocal, session_scope
from credguard.models.base import utcnow
from credguard.services.blacklist import BlacklistRegistry
from credguard.services.events import NOTIFICATION_TASK_NAME, LoggingEventSink
from credguard.services.lifecycle import LifecycleOrchestrator
from credguard.services.notifications import deliver_notification
from credguard_jobs.celery_app import celery_app
from credguard_jobs.config import settings

logger = get_task_logger(__name__)


@celery_app.task(
    bind=True,
    name=NOTIFICATION_TASK_NAME,
    max_retries=settings.notification_max_retries,
    default_retry_delay=30,
)
def send_notification(self, event_type: str, payload: dict[str, Any]) -> dict[str, Any]:
    """Deliver a lifecycle event to the admin notification webhook."""

    try:
        notification_id, _ = deliver_notification(event_type, payload)
    except Exception as exc:
        logger.warning("Notification delivery for %s failed: %s", event_type, exc)
        raise self.retry(exc=exc)

    logger.info("Delivered %s notification %s", event_type, notification_id)
    return {"event_type": event_type, "notification_id": notification_id}


def reconcile_all(session_factory=SessionLocal) -> list[str]:
    """Complete every termination left unfinished by an interrupted suspension."""

    terminated: list[str] = []
    with session_scope(session_factory) as db:
        orchestrator = LifecycleOrchestrator(db, LoggingEventSink())
        for provider_id in orchestrator.directory.providers_over_threshold(
            orchestrator.termination_threshold
        ):
            if orchestrator.reconcile_provider(provider_id) is not None:
                terminated.append(str(provider_id))
    return terminated


def expire_blacklist(session_factory=SessionLocal) -> int:
    with session_scope(session_factory) as db:
        return BlacklistRegistry(db).expire_overdue(now=utcnow())


@celery_app.task(name="credguard.reconcile_terminations")
def reconcile_terminations() -> dict[str, Any]:
    """Sweep providers whose suspension count reached the termination threshold."""

    terminated = reconcile_all()
    if terminated:
        logger.warning("Completed %d interrupted terminations", len(terminated))
    return {"terminated": terminated}


@celery_app.task(name="credguard.expire_blacklist_entries")
def expire_blacklist_entries() -> dict[str, Any]:
    """Deactivate blacklist entries whose expiry has passed."""

    expired = expire_blacklist()
    logger.info("Expired %d blacklist entries", expired)
    return {"expired": expired}
