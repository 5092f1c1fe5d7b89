"""Outbound lifecycle events and the sinks that carry them."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol

from celery import Celery
from prometheus_client import Counter

logger = logging.getLogger(__name__)

NOTIFICATION_TASK_NAME = "credguard.deliver_notification"

LIFECYCLE_EVENTS = Counter(
    "credguard_lifecycle_events_total",
    "Lifecycle events handed to the outbound sink.",
    ["event_type", "delivered"],
)


class EventType(str, enum.Enum):
    """Event types published by the lifecycle engine."""

    PROVIDER_SUSPENDED = "provider.suspended"
    PROVIDER_UNSUSPENDED = "provider.unsuspended"
    PROVIDER_BLACKLISTED = "provider.blacklisted"
    PROVIDER_DELETED = "provider.deleted"
    CANDIDATE_REGISTERED = "candidate.registered"
    CANDIDATE_APPROVED = "candidate.approved"
    CANDIDATE_REJECTED = "candidate.rejected"
    CANDIDATE_BLACKLISTED = "candidate.blacklisted"
    REGISTRATION_BLOCKED = "registration.blocked"


@dataclass
class OutboundEvent:
    """An event as it was handed to the sink."""

    event_type: EventType
    payload: dict[str, Any] = field(default_factory=dict)
    delivered: bool = True

    def as_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "payload": self.payload,
            "delivered": self.delivered,
        }


class OutboundEventSink(Protocol):
    def emit(self, event_type: EventType, payload: dict[str, Any]) -> None:
        ...


class LoggingEventSink:
    """Write every event as a structured log line."""

    def emit(self, event_type: EventType, payload: dict[str, Any]) -> None:
        logger.info(
            "lifecycle event",
            extra={"event_type": event_type.value, "event_payload": payload},
        )


class CeleryEventSink:
    """Hand events to the notification worker by task name."""

    def __init__(self, celery_app: Celery, task_name: str = NOTIFICATION_TASK_NAME) -> None:
        self.celery_app = celery_app
        self.task_name = task_name

    def emit(self, event_type: EventType, payload: dict[str, Any]) -> None:
        self.celery_app.send_task(self.task_name, args=[event_type.value, payload])


class CompositeEventSink:
    """Fan an event out to several sinks; one failing sink does not starve the rest."""

    def __init__(self, sinks: Iterable[OutboundEventSink]) -> None:
        self.sinks = list(sinks)

    def emit(self, event_type: EventType, payload: dict[str, Any]) -> None:
        failures: list[Exception] = []
        for sink in self.sinks:
            try:
                sink.emit(event_type, payload)
            except Exception as exc:
                failures.append(exc)
        if failures:
            raise failures[0]


def emit_safely(
    sink: OutboundEventSink, event_type: EventType, payload: dict[str, Any]
) -> OutboundEvent:
    """Emit an event, logging and swallowing any sink failure."""

    delivered = True
    try:
        sink.emit(event_type, payload)
    except Exception:
        delivered = False
        logger.exception(
            "failed to emit lifecycle event",
            extra={"event_type": event_type.value},
        )
    LIFECYCLE_EVENTS.labels(
        event_type=event_type.value, delivered=str(delivered).lower()
    ).inc()
    return OutboundEvent(event_type=event_type, payload=payload, delivered=delivered)


__all__ = [
    "CeleryEventSink",
    "CompositeEventSink",
    "EventType",
    "LIFECYCLE_EVENTS",
    "LoggingEventSink",
    "NOTIFICATION_TASK_NAME",
    "OutboundEvent",
    "OutboundEventSink",
    "emit_safely",
]
