# carpool/core/geo/routes.py
"""
Кэширование маршрутов.

Маршрут является разделяемым ресурсом «в основном на чтение»: кэш с истечением
по времени, устаревший маршрут допустим как приближение.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Callable

from carpool.common.constants import TypeMsg
from carpool.common.logger import log_info
from carpool.core.geo.kernel import GeoPoint, Route, decode_polyline
from carpool.core.geo.service import RouteInfo, RoutingProvider
from carpool.infra.redis_client import RedisClient


def route_cache_key(origin: GeoPoint, destination: GeoPoint) -> str:
    """Ключ кэша по паре координат."""
    return f"route:{origin.lat:.6f},{origin.lng:.6f}:{destination.lat:.6f},{destination.lng:.6f}"


class RouteCache(ABC):
    """Абстрактный кэш маршрутов с TTL."""

    @abstractmethod
    async def get(self, key: str) -> RouteInfo | None:
        ...

    @abstractmethod
    async def set(self, key: str, route: RouteInfo) -> None:
        ...


class MemoryRouteCache(RouteCache):
    """
    Кэш в памяти процесса.

    Args:
        ttl_seconds: Время жизни записи
        clock: Монотонные часы в секундах (подменяются в тестах)
    """

    def __init__(self, ttl_seconds: float = 3600, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, RouteInfo]] = {}

    async def get(self, key: str) -> RouteInfo | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, route = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return route

    async def set(self, key: str, route: RouteInfo) -> None:
        now = self._clock()
        self._prune(now)
        self._entries[key] = (now + self._ttl, route)

    def _prune(self, now: float) -> None:
        """Удаляет истёкшие записи, которые больше не читались."""
        expired = [key for key, (expires_at, _) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)


class RedisRouteCache(RouteCache):
    """Кэш маршрутов в Redis; истечение обеспечивает TTL ключа."""

    def __init__(self, redis: RedisClient, ttl_seconds: int = 3600) -> None:
        self._redis = redis
        self._ttl = ttl_seconds

    async def get(self, key: str) -> RouteInfo | None:
        data = await self._redis.get_json(key)
        if not isinstance(data, dict):
            return None
        try:
            return RouteInfo.from_dict(data)
        except (KeyError, TypeError, ValueError):
            return None

    async def set(self, key: str, route: RouteInfo) -> None:
        await self._redis.set_json(key, route.to_dict(), ttl=self._ttl)


class CachedRouteProvider:
    """
    Провайдер маршрутов с кэшем.

    Ошибки провайдера не кэшируются и пробрасываются вызывающему.
    """

    def __init__(self, provider: RoutingProvider, cache: RouteCache) -> None:
        self._provider = provider
        self._cache = cache

    async def get_route(self, origin: GeoPoint, destination: GeoPoint) -> RouteInfo:
        """Возвращает маршрут из кэша или запрашивает у провайдера."""
        key = route_cache_key(origin, destination)
        cached = await self._cache.get(key)
        if cached is not None:
            return cached

        route = await self._provider.calculate_route(origin, destination)
        await self._cache.set(key, route)
        await log_info(f"Маршрут закэширован: {key}", type_msg=TypeMsg.DEBUG)
        return route

    async def get_route_points(self, origin: GeoPoint, destination: GeoPoint) -> Route:
        """
        Возвращает точки маршрута.

        Если провайдер вернул пустую или одноточечную полилинию, маршрут
        заменяется прямым отрезком origin-destination.
        """
        info = await self.get_route(origin, destination)
        points = decode_polyline(info.polyline)
        if len(points) < 2:
            return (origin, destination)
        return points
