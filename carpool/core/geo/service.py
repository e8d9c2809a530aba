# carpool/core/geo/service.py
"""
Провайдер маршрутов на базе Google Directions API.
Возвращает расстояние, длительность и закодированную полилинию.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Protocol

import httpx

from carpool.common.constants import TypeMsg
from carpool.common.errors import RouteProviderError
from carpool.common.logger import log_error, log_info
from carpool.core.geo.kernel import GeoPoint


@dataclass(frozen=True)
class RouteInfo:
    """Информация о маршруте."""
    distance_km: float
    duration_minutes: int
    polyline: str = ""  # Encoded polyline

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RouteInfo":
        return cls(
            distance_km=float(data["distance_km"]),
            duration_minutes=int(data["duration_minutes"]),
            polyline=str(data.get("polyline", "")),
        )


class RoutingProvider(Protocol):
    """Внешний провайдер маршрутов."""

    async def calculate_route(self, origin: GeoPoint, destination: GeoPoint) -> RouteInfo:
        ...


class GeoService:
    """
    Клиент Google Directions API.

    Каждый запрос ограничен таймаутом; любой сбой (таймаут, сеть,
    статус ответа не OK) поднимается как RouteProviderError.
    """

    DIRECTIONS_URL = "https://maps.googleapis.com/maps/api/directions/json"

    def __init__(
        self,
        api_key: str | None = None,
        language: str = "en",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Инициализация сервиса.

        Args:
            api_key: API ключ Google Maps (берётся из конфига если None)
            language: Язык ответов
            timeout: Таймаут запроса в секундах
            client: Готовый HTTP клиент (для тестов)
        """
        if api_key is None:
            from carpool.config import settings
            api_key = settings.google_maps.GOOGLE_MAPS_API_KEY
            language = settings.google_maps.DIRECTIONS_LANGUAGE
            timeout = settings.google_maps.REQUEST_TIMEOUT

        self._api_key = api_key
        self._language = language
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        """Закрывает HTTP клиент."""
        await self._client.aclose()

    async def calculate_route(self, origin: GeoPoint, destination: GeoPoint) -> RouteInfo:
        """
        Рассчитывает маршрут между двумя точками.

        Args:
            origin: Точка начала
            destination: Точка конца

        Returns:
            Информация о маршруте

        Raises:
            RouteProviderError: Провайдер недоступен или маршрут не найден
        """
        if not self._api_key:
            raise RouteProviderError("Google Maps API key не настроен")

        route_repr = f"({origin.lat},{origin.lng}) -> ({destination.lat},{destination.lng})"

        try:
            response = await self._client.get(
                self.DIRECTIONS_URL,
                params={
                    "origin": f"{origin.lat},{origin.lng}",
                    "destination": f"{destination.lat},{destination.lng}",
                    "mode": "driving",
                    "key": self._api_key,
                    "language": self._language,
                },
            )
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            await log_error(f"Таймаут запроса маршрута {route_repr}")
            raise RouteProviderError("Таймаут провайдера маршрутов", route=route_repr) from e
        except httpx.HTTPError as e:
            await log_error(f"Ошибка запроса маршрута {route_repr}: {e}")
            raise RouteProviderError(f"Ошибка провайдера маршрутов: {e}", route=route_repr) from e
        except ValueError as e:
            raise RouteProviderError("Некорректный ответ провайдера маршрутов", route=route_repr) from e

        status = data.get("status")
        if status != "OK" or not data.get("routes"):
            await log_info(f"Маршрут не найден: {route_repr}, status={status}", type_msg=TypeMsg.WARNING)
            raise RouteProviderError(f"Маршрут не найден: {status}", route=route_repr, status=status)

        try:
            route = data["routes"][0]
            leg = route["legs"][0]
            distance_m = leg["distance"]["value"]
            duration_s = leg["duration"]["value"]
        except (KeyError, IndexError, TypeError) as e:
            raise RouteProviderError("Неполный ответ провайдера маршрутов", route=route_repr) from e

        return RouteInfo(
            distance_km=round(distance_m / 1000, 2),
            duration_minutes=round(duration_s / 60),
            polyline=route.get("overview_polyline", {}).get("points", ""),
        )
