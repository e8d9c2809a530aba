# carpool/core/geo/kernel.py
"""
Геометрическое ядро.

Чистые функции без I/O: расстояние по большому кругу, азимут,
проекция точки на отрезок и декодирование полилинии маршрута.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import polyline
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from carpool.common.errors import DecodeError


EARTH_RADIUS_M = 6_371_000.0

# Допустимый диапазон символов закодированной полилинии
_POLYLINE_MIN_CHAR = 63
_POLYLINE_MAX_CHAR = 126
_CONTINUATION_BIT = 0x20


class GeoPoint(BaseModel):
    """Точка WGS84 в градусах."""

    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90, description="Широта")
    lng: float = Field(..., ge=-180, le=180, description="Долгота")

    def as_tuple(self) -> tuple[float, float]:
        return self.lat, self.lng


# Маршрут: упорядоченная неизменяемая последовательность точек
Route = tuple[GeoPoint, ...]


@dataclass(frozen=True)
class SegmentProjection:
    """Ближайшая к точке позиция на отрезке."""
    point: GeoPoint
    distance_m: float
    t: float  # Положение на отрезке, [0, 1]


def haversine_meters(p1: GeoPoint, p2: GeoPoint) -> float:
    """Расстояние по большому кругу между двумя точками в метрах."""
    phi1 = math.radians(p1.lat)
    phi2 = math.radians(p2.lat)
    d_phi = math.radians(p2.lat - p1.lat)
    d_lambda = math.radians(p2.lng - p1.lng)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    # Погрешность округления может вывести a за пределы [0, 1]
    a = min(1.0, max(0.0, a))
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def bearing_degrees(p1: GeoPoint, p2: GeoPoint) -> float:
    """Начальный компасный азимут из p1 в p2, в диапазоне [0, 360)."""
    phi1 = math.radians(p1.lat)
    phi2 = math.radians(p2.lat)
    d_lambda = math.radians(p2.lng - p1.lng)

    y = math.sin(d_lambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(d_lambda)
    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0


def bearing_difference(b1: float, b2: float) -> float:
    """Абсолютная разница азимутов, приведённая к [0, 180]."""
    diff = abs(b1 - b2) % 360.0
    return 360.0 - diff if diff > 180.0 else diff


def closest_point_on_segment(p: GeoPoint, a: GeoPoint, b: GeoPoint) -> SegmentProjection:
    """
    Проецирует точку на отрезок a-b.

    Проекция считается на плоскости (lng, lat), что допустимо на локальном
    масштабе; расстояние до проекции считается по большому кругу.
    Вырожденный отрезок (a == b) проецируется в a.
    """
    dx = b.lng - a.lng
    dy = b.lat - a.lat
    length_sq = dx * dx + dy * dy

    if length_sq == 0:
        t = 0.0
    else:
        t = ((p.lng - a.lng) * dx + (p.lat - a.lat) * dy) / length_sq
        t = min(1.0, max(0.0, t))

    projected = GeoPoint(lat=a.lat + t * dy, lng=a.lng + t * dx)
    return SegmentProjection(point=projected, distance_m=haversine_meters(p, projected), t=t)


def decode_polyline(encoded: str) -> Route:
    """
    Декодирует полилинию формата Google Encoded Polyline.

    Args:
        encoded: Закодированная строка; пустая строка даёт пустой маршрут

    Returns:
        Упорядоченный кортеж GeoPoint

    Raises:
        DecodeError: Недопустимые символы, обрыв строки или координаты вне WGS84
    """
    if not encoded:
        return ()

    for index, char in enumerate(encoded):
        if not _POLYLINE_MIN_CHAR <= ord(char) <= _POLYLINE_MAX_CHAR:
            raise DecodeError(f"Недопустимый символ полилинии в позиции {index}", position=index)

    # Последний символ обязан завершать значение
    if ord(encoded[-1]) - _POLYLINE_MIN_CHAR >= _CONTINUATION_BIT:
        raise DecodeError("Полилиния обрывается посреди значения", length=len(encoded))

    try:
        coordinates = polyline.decode(encoded)
    except (IndexError, ValueError, TypeError) as e:
        raise DecodeError(f"Повреждённая полилиния: {e}") from e

    try:
        return tuple(GeoPoint(lat=lat, lng=lng) for lat, lng in coordinates)
    except PydanticValidationError as e:
        raise DecodeError("Координаты полилинии вне диапазона WGS84") from e
