# carpool/core/trips/__init__.py
"""
Домен совместных поездок.
Модели, учёт мест, конфликты и жизненный цикл.

Сервис поездок импортируется напрямую из carpool.core.trips.service:
подбор зависит от моделей этого пакета.
"""

from carpool.core.trips.models import (
    JoinTripCommand,
    LeaveResult,
    NearbyTrip,
    NearbyTripsQuery,
    QuoteFareQuery,
    RequestTripCommand,
    RequestTripResult,
    Trip,
    TripMember,
)

__all__ = [
    "JoinTripCommand",
    "LeaveResult",
    "NearbyTrip",
    "NearbyTripsQuery",
    "QuoteFareQuery",
    "RequestTripCommand",
    "RequestTripResult",
    "Trip",
    "TripMember",
]
