# carpool/common/timeutils.py
"""
Работа с гражданскими датами и временем поездок.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from carpool.common.errors import ValidationError


# Источник текущего времени (подменяется в тестах)
Clock = Callable[[], datetime]

DATE_FORMATS = ("%Y-%m-%d", "%d-%m-%Y")


def utc_now() -> datetime:
    """Текущее время в UTC с таймзоной."""
    return datetime.now(timezone.utc)


def parse_trip_date(value: str) -> date:
    """
    Разбирает гражданскую дату поездки.

    Args:
        value: Дата в формате YYYY-MM-DD или DD-MM-YYYY

    Returns:
        Объект date

    Raises:
        ValidationError: Формат не распознан
    """
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value.strip(), fmt).date()
        except ValueError:
            continue
    raise ValidationError(f"Некорректная дата поездки: {value!r}", field="trip_date", value=value)


def parse_clock_time(value: str) -> time:
    """Разбирает время в формате HH:MM."""
    try:
        return datetime.strptime(value.strip(), "%H:%M").time()
    except ValueError as e:
        raise ValidationError(f"Некорректное время: {value!r}", field="time", value=value) from e


def get_zone(tz_name: str) -> ZoneInfo:
    """Возвращает таймзону по имени IANA."""
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValidationError(f"Неизвестная таймзона: {tz_name}", field="timezone") from e


def combine_local(trip_date: date, clock_time: time, tz_name: str) -> datetime:
    """
    Собирает момент старта из гражданской даты и времени в таймзоне сервиса.

    Returns:
        Время с таймзоной, приведённое к UTC
    """
    local = datetime.combine(trip_date, clock_time, tzinfo=get_zone(tz_name))
    return local.astimezone(timezone.utc)


def local_today(now: datetime, tz_name: str) -> date:
    """Гражданская дата «сегодня» в таймзоне сервиса."""
    return now.astimezone(get_zone(tz_name)).date()
