# carpool/dependencies.py
"""
Фабрики сервисов поверх глобальной инфраструктуры.
"""

from __future__ import annotations

from carpool.core.geo.routes import CachedRouteProvider, RedisRouteCache
from carpool.core.geo.service import GeoService
from carpool.core.matching.service import MatchingPolicy
from carpool.core.notifications.service import NotificationService
from carpool.core.pricing.repository import SettingsRepository
from carpool.core.trips.repository import TripRepository
from carpool.core.trips.service import TripService
from carpool.core.trips.state_machine import LifecyclePolicy
from carpool.infra.database import get_db
from carpool.infra.event_bus import get_event_bus
from carpool.infra.redis_client import get_redis


# Кэшированные экземпляры сервисов
_geo_service: GeoService | None = None
_route_provider: CachedRouteProvider | None = None
_notification_service: NotificationService | None = None
_trip_service: TripService | None = None


def get_geo_service() -> GeoService:
    """Возвращает клиент Directions API."""
    global _geo_service
    if _geo_service is None:
        _geo_service = GeoService()
    return _geo_service


def get_route_provider() -> CachedRouteProvider:
    """Возвращает провайдер маршрутов с кэшем в Redis."""
    from carpool.config import settings

    global _route_provider
    if _route_provider is None:
        _route_provider = CachedRouteProvider(
            provider=get_geo_service(),
            cache=RedisRouteCache(get_redis(), ttl_seconds=settings.redis_ttl.ROUTE_TTL),
        )
    return _route_provider


def get_notification_service() -> NotificationService:
    """Возвращает сервис уведомлений."""
    from carpool.config import settings

    global _notification_service
    if _notification_service is None:
        _notification_service = NotificationService(
            event_bus=get_event_bus(),
            default_delay_ms=settings.notifications.NOTIFICATION_DELAY_MS,
        )
    return _notification_service


def get_trip_service() -> TripService:
    """Возвращает сервис поездок."""
    from carpool.config import settings

    global _trip_service
    if _trip_service is None:
        db = get_db()
        _trip_service = TripService(
            repository=TripRepository(db),
            settings_repository=SettingsRepository(db),
            routes=get_route_provider(),
            notifier=get_notification_service(),
            events=get_event_bus(),
            matching_policy=MatchingPolicy.from_settings(),
            lifecycle_policy=LifecyclePolicy.from_settings(),
            timezone_name=settings.domain.TIMEZONE,
            page_size=settings.matching.DEFAULT_PAGE_SIZE,
        )
    return _trip_service


async def close_services() -> None:
    """Дожидается отложенных уведомлений и закрывает HTTP клиент."""
    global _geo_service, _route_provider, _notification_service, _trip_service

    if _notification_service is not None:
        await _notification_service.drain()
    if _geo_service is not None:
        await _geo_service.close()

    _geo_service = None
    _route_provider = None
    _notification_service = None
    _trip_service = None
