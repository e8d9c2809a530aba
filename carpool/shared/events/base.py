# carpool/shared/events/base.py
"""
Базовые классы для доменных событий.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TypeVar
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class EventMetadata(BaseModel):
    """Метаданные события для трассировки и дедупликации."""

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    correlation_id: str | None = None
    source_service: str = "carpool"
    version: int = 1


class DomainEvent(BaseModel):
    """
    Базовый класс для всех доменных событий.

    События иммутабельны, сериализуются в JSON и идемпотентны
    при обработке (по event_id).
    """

    model_config = ConfigDict(frozen=True)

    event_type: str = ""
    metadata: EventMetadata = Field(default_factory=EventMetadata)

    def to_json(self) -> str:
        """Сериализует событие в JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str | bytes) -> "DomainEvent":
        """Десериализует событие из JSON."""
        return cls.model_validate_json(data)

    @property
    def event_id(self) -> str:
        """Уникальный идентификатор события."""
        return self.metadata.event_id


EventT = TypeVar("EventT", bound=DomainEvent)
