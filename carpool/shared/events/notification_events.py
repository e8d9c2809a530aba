# carpool/shared/events/notification_events.py
"""
События домена уведомлений.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import Field

from carpool.shared.events.base import DomainEvent


class NotificationRequested(DomainEvent):
    """Событие: запрос на доставку уведомления пользователю."""

    event_type: Literal["notification.requested"] = "notification.requested"

    recipient_id: str
    title: str
    body: str
    data: dict[str, Any] = Field(default_factory=dict)
