"""Thin wrapper around the admin notification webhook."""

from __future__ import annotations

import logging
import uuid
from typing import Any

import httpx

from credguard.core.config import settings

logger = logging.getLogger(__name__)

_TIMEOUT = httpx.Timeout(connect=5.0, read=15.0, write=15.0, pool=5.0)


def build_notification(event_type: str, payload: dict[str, Any]) -> dict[str, Any]:
    """Shape a lifecycle event into the admin notification document."""

    return {
        "type": event_type,
        "category": payload.get("category", "general"),
        "priority": payload.get("priority", "medium"),
        "title": event_type.replace(".", " ").replace("_", " ").title(),
        "data": payload,
    }


def _mock_send(notification: dict[str, Any]) -> tuple[str, dict[str, Any]]:
    notification_id = f"mocked-{uuid.uuid4()}"
    logger.debug("Mocking notification delivery with payload: %s", notification)
    return notification_id, {"id": notification_id, "mocked": True, "payload": notification}


def deliver_notification(
    event_type: str, payload: dict[str, Any]
) -> tuple[str, dict[str, Any]]:
    """POST a notification to the configured webhook and return its identifier."""

    notification = build_notification(event_type, payload)
    if settings.notification_mock_mode:
        return _mock_send(notification)

    url = settings.notification_webhook_url
    if not url:
        raise RuntimeError("NOTIFICATION_WEBHOOK_URL is not configured")

    headers = {"Content-Type": "application/json"}
    if settings.notification_api_key:
        headers["apikey"] = settings.notification_api_key

    with httpx.Client(timeout=_TIMEOUT) as client:
        response = client.post(url, headers=headers, json=notification)
    response.raise_for_status()
    data = response.json() if response.content else {}
    notification_id = data.get("id") or data.get("notification_id") or str(uuid.uuid4())

    logger.debug("Notification webhook responded with %s", data)
    return str(notification_id), data
