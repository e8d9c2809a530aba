# tests/core/test_conflicts.py
"""
Тесты для детектора временных конфликтов.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from carpool.common.errors import ConflictError
from carpool.core.trips.conflicts import ConflictDetector, find_conflict, windows_conflict
from carpool.core.trips.models import CommitmentWindow
from carpool.core.trips.state_machine import LifecyclePolicy


START = datetime(2026, 1, 11, 8, 0, tzinfo=timezone.utc)
BUFFER = timedelta(hours=2)
DEFAULT = timedelta(hours=2)


def window(trip_id: str, start: datetime, hours: float | None = 1) -> CommitmentWindow:
    end = start + timedelta(hours=hours) if hours is not None else None
    return CommitmentWindow(trip_id=trip_id, start=start, end=end)


@pytest.fixture
def source() -> AsyncMock:
    source = AsyncMock()
    source.get_user_commitments = AsyncMock(return_value=[])
    source.get_driver_commitments = AsyncMock(return_value=[])
    return source


class TestWindowsConflict:
    """Тесты правила конфликта."""

    def test_close_starts(self) -> None:
        """Старты ближе буфера конфликтуют."""
        existing = window("t1", START)
        assert windows_conflict(START + timedelta(hours=1, minutes=59), None, existing, BUFFER, DEFAULT)

    def test_far_starts_without_end(self) -> None:
        """Без конца проверяется только близость стартов."""
        existing = window("t1", START, hours=10)
        assert not windows_conflict(START + timedelta(hours=3), None, existing, BUFFER, DEFAULT)

    def test_overlapping_intervals(self) -> None:
        """Пересечение длинных интервалов при далёких стартах."""
        existing = window("t1", START, hours=10)
        proposed = START + timedelta(hours=3)
        assert windows_conflict(proposed, proposed + timedelta(hours=1), existing, BUFFER, DEFAULT)

    def test_missing_end_uses_default_length(self) -> None:
        """Обязательство без конца считается длиной по умолчанию."""
        existing = window("t1", START, hours=None)
        proposed = START + timedelta(hours=2, minutes=30)
        assert not windows_conflict(proposed, proposed + timedelta(hours=1), existing, BUFFER, DEFAULT)
        assert windows_conflict(proposed, proposed + timedelta(hours=1), existing, BUFFER, timedelta(hours=3))

    def test_find_conflict_returns_first(self) -> None:
        """Возвращается первое конфликтующее обязательство."""
        commitments = [window("far", START + timedelta(hours=10)), window("near", START)]
        assert find_conflict(START, START + timedelta(hours=1), commitments, BUFFER, DEFAULT).trip_id == "near"
        assert find_conflict(START + timedelta(hours=5), None, commitments[1:], BUFFER, DEFAULT) is None


class TestConflictDetector:
    """Тесты проверок пассажира и водителя."""

    @pytest.mark.asyncio
    async def test_user_conflict(self, source: AsyncMock) -> None:
        """Пересечение с активной поездкой пассажира."""
        source.get_user_commitments.return_value = [window("t1", START)]
        detector = ConflictDetector(source, LifecyclePolicy())

        with pytest.raises(ConflictError) as exc_info:
            await detector.check_user("u1", START + timedelta(minutes=30))
        assert exc_info.value.details["conflicting_trip_id"] == "t1"

    @pytest.mark.asyncio
    async def test_user_excluded_trip(self, source: AsyncMock) -> None:
        """Сама поездка исключается из проверки."""
        source.get_user_commitments.return_value = [window("t1", START)]
        detector = ConflictDetector(source, LifecyclePolicy())

        await detector.check_user("u1", START, exclude_trip_id="t1")

    @pytest.mark.asyncio
    async def test_driver_window(self, source: AsyncMock) -> None:
        """Водитель: назначенная поездка в пределах 2 часов блокирует новую."""
        source.get_driver_commitments.return_value = [window("t1", START)]
        detector = ConflictDetector(source, LifecyclePolicy())

        with pytest.raises(ConflictError):
            await detector.check_driver("d1", START - timedelta(hours=1, minutes=30))
        await detector.check_driver("d1", START + timedelta(hours=2))
