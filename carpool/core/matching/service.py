# carpool/core/matching/service.py
"""
Сервис подбора попутных поездок.

Решает, лежат ли точки посадки и высадки нового пассажира на маршруте
открытой поездки и в правильном ли порядке.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import timedelta
from typing import Sequence

from carpool.common.constants import TripStatus
from carpool.common.errors import DecodeError, RouteProviderError
from carpool.common.logger import log_debug, log_warning
from carpool.core.geo.kernel import (
    GeoPoint,
    Route,
    bearing_degrees,
    bearing_difference,
    closest_point_on_segment,
    haversine_meters,
)
from carpool.core.geo.routes import CachedRouteProvider
from carpool.core.trips.models import NearbyTrip, NearbyTripsQuery, Trip


@dataclass(frozen=True)
class MatchingPolicy:
    """Параметры подбора."""
    corridor_max_bearing_diff: float = 25.0
    parallel_bearing_diff: float = 20.0
    start_time_window: timedelta = timedelta(minutes=30)
    short_route_max_km: float = 100.0
    medium_route_max_km: float = 200.0
    short_route_tolerance_km: float = 40.0
    medium_route_tolerance_km: float = 60.0
    long_route_tolerance_km: float = 80.0

    @classmethod
    def from_settings(cls) -> "MatchingPolicy":
        """Собирает политику из секции matching конфигурации."""
        from carpool.config import settings

        conf = settings.matching
        return cls(
            corridor_max_bearing_diff=conf.CORRIDOR_MAX_BEARING_DIFF,
            parallel_bearing_diff=conf.PARALLEL_BEARING_DIFF,
            start_time_window=timedelta(minutes=conf.START_TIME_WINDOW_MINUTES),
            short_route_max_km=conf.SHORT_ROUTE_MAX_KM,
            medium_route_max_km=conf.MEDIUM_ROUTE_MAX_KM,
            short_route_tolerance_km=conf.SHORT_ROUTE_TOLERANCE_KM,
            medium_route_tolerance_km=conf.MEDIUM_ROUTE_TOLERANCE_KM,
            long_route_tolerance_km=conf.LONG_ROUTE_TOLERANCE_KM,
        )

    def tolerance_m(self, route_length_km: float) -> float:
        """Допуск растёт с длиной маршрута: 40 / 60 / 80 км."""
        if route_length_km <= self.short_route_max_km:
            return self.short_route_tolerance_km * 1000
        if route_length_km <= self.medium_route_max_km:
            return self.medium_route_tolerance_km * 1000
        return self.long_route_tolerance_km * 1000


@dataclass(frozen=True)
class RoutePosition:
    """Положение точки относительно маршрута."""
    on_route: bool
    distance_m: float
    t: float  # Нормированное положение вдоль всего маршрута, [0, 1]


def same_corridor(
    trip_origin: GeoPoint,
    trip_destination: GeoPoint,
    origin: GeoPoint,
    destination: GeoPoint,
    policy: MatchingPolicy,
) -> bool:
    """Направления поездки и пассажира совпадают в пределах коридора."""
    diff = bearing_difference(
        bearing_degrees(trip_origin, trip_destination),
        bearing_degrees(origin, destination),
    )
    return diff <= policy.corridor_max_bearing_diff


def locate_point(
    point: GeoPoint,
    route: Sequence[GeoPoint],
    trip_origin: GeoPoint,
    trip_destination: GeoPoint,
    policy: MatchingPolicy,
) -> RoutePosition:
    """
    Находит ближайшую к точке позицию на маршруте.

    t = (индекс сегмента + t внутри сегмента) / число сегментов.
    Точка на маршруте, если она в пределах допуска, либо если азимут
    от начала поездки на точку почти совпадает с азимутом маршрута.
    """
    if not route:
        route = (trip_origin, trip_destination)

    if len(route) == 1:
        distance = haversine_meters(point, route[0])
        best_t = 0.0
    else:
        segments = len(route) - 1
        distance = float("inf")
        best_t = 0.0
        for index in range(segments):
            projection = closest_point_on_segment(point, route[index], route[index + 1])
            if projection.distance_m < distance:
                distance = projection.distance_m
                best_t = (index + projection.t) / segments

    tolerance = policy.tolerance_m(haversine_meters(trip_origin, trip_destination) / 1000)
    route_bearing = bearing_degrees(trip_origin, trip_destination)
    point_bearing = bearing_degrees(trip_origin, point)
    aligned = bearing_difference(route_bearing, point_bearing) <= policy.parallel_bearing_diff

    return RoutePosition(on_route=distance <= tolerance or aligned, distance_m=distance, t=best_t)


class RouteMatcher:
    """
    Подбор открытых поездок для нового пассажира.

    Кандидаты проверяются независимо и параллельно, затем результаты
    сортируются по расстоянию до точки посадки и пагинируются.
    """

    def __init__(self, routes: CachedRouteProvider, policy: MatchingPolicy | None = None) -> None:
        self._routes = routes
        self.policy = policy or MatchingPolicy()

    def evaluate(self, trip: Trip, query: NearbyTripsQuery, route: Route) -> NearbyTrip | None:
        """
        Проверяет одну поездку на полное совпадение.

        Требуется: статус OPEN, достаточно мест, старт в пределах окна,
        общий коридор, обе точки на маршруте и t_pickup < t_drop.
        """
        if trip.status != TripStatus.OPEN:
            return None
        if trip.available_seats < query.seats_requested:
            return None
        if abs(trip.start_time - query.start_time) > self.policy.start_time_window:
            return None
        if not same_corridor(trip.origin, trip.destination, query.origin, query.destination, self.policy):
            return None

        pickup = locate_point(query.origin, route, trip.origin, trip.destination, self.policy)
        if not pickup.on_route:
            return None
        drop = locate_point(query.destination, route, trip.origin, trip.destination, self.policy)
        if not drop.on_route:
            return None
        if pickup.t >= drop.t:
            return None

        return NearbyTrip(
            trip=trip,
            available_seats=trip.available_seats,
            pickup_distance_m=pickup.distance_m,
            dropoff_distance_m=drop.distance_m,
            pickup_t=pickup.t,
            dropoff_t=drop.t,
        )

    async def _match_candidate(self, trip: Trip, query: NearbyTripsQuery) -> NearbyTrip | None:
        # Дешёвые проверки до обращения к провайдеру маршрутов
        if trip.available_seats < query.seats_requested:
            return None
        if not same_corridor(trip.origin, trip.destination, query.origin, query.destination, self.policy):
            return None

        route = await self._routes.get_route_points(trip.origin, trip.destination)
        return self.evaluate(trip, query, route)

    async def find_nearby(self, candidates: Sequence[Trip], query: NearbyTripsQuery) -> list[NearbyTrip]:
        """
        Возвращает подходящие поездки, отсортированные по расстоянию до посадки.

        Кандидат, для которого маршрут получить не удалось, пропускается
        с предупреждением; если не удалось ни для одного, ошибка провайдера
        пробрасывается.

        Raises:
            RouteProviderError: Провайдер недоступен для всех кандидатов
        """
        open_trips = [t for t in candidates if t.status == TripStatus.OPEN]
        if not open_trips:
            return []

        results = await asyncio.gather(
            *(self._match_candidate(trip, query) for trip in open_trips),
            return_exceptions=True,
        )

        matches: list[NearbyTrip] = []
        failures: list[Exception] = []
        for trip, result in zip(open_trips, results):
            if isinstance(result, (RouteProviderError, DecodeError)):
                failures.append(result)
                await log_warning(f"Пропуск кандидата {trip.id}: маршрут недоступен ({result})")
            elif isinstance(result, BaseException):
                raise result
            elif result is not None:
                matches.append(result)

        if failures and len(failures) == len(open_trips):
            raise RouteProviderError(
                "Не удалось получить маршруты ни для одного кандидата",
                candidates=len(open_trips),
            ) from failures[0]

        matches.sort(key=lambda m: m.pickup_distance_m)
        page = matches[query.skip:query.skip + query.take]
        await log_debug(f"Подбор: кандидатов={len(open_trips)}, совпадений={len(matches)}, на странице={len(page)}")
        return page
