# carpool/shared/events/__init__.py
"""
Схемы событий для RabbitMQ.

События разделены по доменам:
- trip_events: создание, участники, статусы, расчёт, отмена
- notification_events: запрос на отправку уведомления

Все события идемпотентны и содержат event_id для дедупликации.
"""

from carpool.shared.events.base import DomainEvent, EventMetadata
from carpool.shared.events.notification_events import NotificationRequested
from carpool.shared.events.trip_events import (
    TripBecameFull,
    TripCancelled,
    TripCompleted,
    TripCreated,
    TripMemberJoined,
    TripMemberLeft,
    TripStatusChanged,
)

__all__ = [
    "DomainEvent",
    "EventMetadata",
    "TripCreated",
    "TripMemberJoined",
    "TripMemberLeft",
    "TripStatusChanged",
    "TripBecameFull",
    "TripCompleted",
    "TripCancelled",
    "NotificationRequested",
]
