# carpool/core/trips/conflicts.py
"""
Детектор временных конфликтов.

Не даёт пассажиру или водителю оказаться в двух поездках одновременно.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, Protocol

from carpool.common.errors import ConflictError
from carpool.core.trips.models import CommitmentWindow
from carpool.core.trips.state_machine import LifecyclePolicy


class CommitmentSource(Protocol):
    """Источник активных обязательств (репозиторий поездок)."""

    async def get_user_commitments(self, user_id: str) -> list[CommitmentWindow]:
        ...

    async def get_driver_commitments(self, driver_id: str) -> list[CommitmentWindow]:
        ...


def windows_conflict(
    proposed_start: datetime,
    proposed_end: datetime | None,
    existing: CommitmentWindow,
    buffer: timedelta,
    default_length: timedelta,
) -> bool:
    """
    Проверяет конфликт предлагаемого окна с существующим обязательством.

    Конфликт, если старты ближе buffer, или если интервалы
    [proposed_start, proposed_end) и [existing.start, existing.end)
    пересекаются. Без proposed_end проверяется только близость стартов.
    """
    if abs(proposed_start - existing.start) < buffer:
        return True
    if proposed_end is None:
        return False
    existing_end = existing.effective_end(default_length)
    return proposed_start < existing_end and existing.start < proposed_end


def find_conflict(
    proposed_start: datetime,
    proposed_end: datetime | None,
    commitments: Iterable[CommitmentWindow],
    buffer: timedelta,
    default_length: timedelta,
) -> CommitmentWindow | None:
    """Возвращает первое конфликтующее обязательство или None."""
    for window in commitments:
        if windows_conflict(proposed_start, proposed_end, window, buffer, default_length):
            return window
    return None


class ConflictDetector:
    """Проверки конфликтов для пассажиров и водителей."""

    def __init__(self, source: CommitmentSource, policy: LifecyclePolicy) -> None:
        self._source = source
        self._policy = policy

    async def check_user(
        self,
        user_id: str,
        start: datetime,
        end: datetime | None = None,
        exclude_trip_id: str | None = None,
    ) -> None:
        """
        Raises:
            ConflictError: У пользователя есть пересекающееся активное обязательство
        """
        commitments = [
            c for c in await self._source.get_user_commitments(user_id)
            if c.trip_id != exclude_trip_id
        ]
        conflict = find_conflict(
            start,
            end,
            commitments,
            self._policy.conflict_buffer,
            self._policy.default_commitment,
        )
        if conflict is not None:
            raise ConflictError(
                "У пользователя уже есть поездка в это время",
                user_id=user_id,
                conflicting_trip_id=conflict.trip_id,
                conflicting_start=conflict.start.isoformat(),
            )

    async def check_driver(self, driver_id: str, start: datetime) -> None:
        """
        Водитель не может взять поездку, если у него есть назначенная
        неоплаченная поездка со стартом в пределах окна.

        Raises:
            ConflictError: Конфликт расписания водителя
        """
        window = self._policy.driver_conflict_window
        for commitment in await self._source.get_driver_commitments(driver_id):
            if abs(commitment.start - start) < window:
                raise ConflictError(
                    "У водителя уже есть назначенная поездка в это время",
                    driver_id=driver_id,
                    conflicting_trip_id=commitment.trip_id,
                    conflicting_start=commitment.start.isoformat(),
                )
