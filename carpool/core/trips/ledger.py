# carpool/core/trips/ledger.py
"""
Учёт мест и стоимости в поездке.

Функции не мутируют входную поездку и возвращают обновлённую копию;
вызывающий код применяет их внутри одной атомарной операции.
"""

from __future__ import annotations

from dataclasses import dataclass

from carpool.common.constants import CAPACITY, BookingType, TripStatus
from carpool.common.errors import CapacityExceededError, NotTripMemberError
from carpool.core.geo.kernel import GeoPoint, haversine_meters
from carpool.core.trips.models import Trip, TripMember
from carpool.core.trips.state_machine import TripStateMachine


@dataclass(frozen=True)
class RouteSpan:
    """Номинальные концы маршрута поездки."""
    origin: GeoPoint
    destination: GeoPoint


@dataclass(frozen=True)
class RemovalOutcome:
    """Итог удаления участника."""
    trip: Trip
    member: TripMember
    cancelled: bool


def initial_status(booking_type: BookingType, seats: int) -> TripStatus:
    """Поездка, созданная сразу на всю вместимость, рождается FULL."""
    return TripStatus.FULL if seats == CAPACITY[booking_type] else TripStatus.OPEN


def is_full_capacity_request(booking_type: BookingType, seats: int) -> bool:
    """Запрос на всю вместимость не ищет попутчиков."""
    return seats == CAPACITY[booking_type]


def widen_route(current: RouteSpan, pickup: GeoPoint, drop: GeoPoint) -> RouteSpan:
    """
    Расширяет маршрут поездки до крайних точек участников.

    Новый pickup становится началом, если от него до текущего конца дальше,
    чем длина текущего маршрута; аналогично drop становится концом.
    """
    span = haversine_meters(current.origin, current.destination)

    origin = pickup if haversine_meters(pickup, current.destination) > span else current.origin
    destination = drop if haversine_meters(current.origin, drop) > span else current.destination
    return RouteSpan(origin=origin, destination=destination)


def add_member(trip: Trip, member: TripMember) -> Trip:
    """
    Добавляет участника: места, стоимость, маршрут и статус.

    Raises:
        CapacityExceededError: Мест недостаточно
    """
    if trip.seats_booked + member.seats_booked > trip.capacity:
        raise CapacityExceededError(
            f"Недостаточно мест: свободно {trip.available_seats}, запрошено {member.seats_booked}",
            trip_id=trip.id,
            available=trip.available_seats,
            requested=member.seats_booked,
        )

    updated = trip.model_copy(deep=True)
    updated.members.append(member)
    updated.total_fare += member.passenger_fare
    updated.driver_share += member.driver_share
    updated.app_commission += member.app_commission

    span = widen_route(RouteSpan(trip.origin, trip.destination), member.pickup, member.drop)
    updated.origin = span.origin
    updated.destination = span.destination

    if updated.seats_booked == updated.capacity:
        TripStateMachine.ensure(updated.status, TripStatus.FULL)
        updated.status = TripStatus.FULL
    return updated


def remove_member(trip: Trip, user_id: str) -> RemovalOutcome:
    """
    Удаляет участника.

    Поездка отменяется, если участников не осталось или вышедший держал
    всю вместимость; иначе FULL/ASSIGNED возвращается в OPEN (водитель
    снимается), а вклад участника вычитается из итогов.

    Raises:
        NotTripMemberError: Пользователь не участник
    """
    member = trip.member(user_id)
    if member is None:
        raise NotTripMemberError("Пользователь не участвует в поездке", trip_id=trip.id, user_id=user_id)

    updated = trip.model_copy(deep=True)
    updated.members = [m for m in updated.members if m.user_id != user_id]

    if not updated.members or member.seats_booked == trip.capacity:
        TripStateMachine.ensure(updated.status, TripStatus.CANCELLED)
        updated.status = TripStatus.CANCELLED
        updated.total_fare = 0
        updated.driver_share = 0
        updated.app_commission = 0
        return RemovalOutcome(trip=updated, member=member, cancelled=True)

    updated.total_fare = max(0, updated.total_fare - member.passenger_fare)
    updated.driver_share = max(0, updated.driver_share - member.driver_share)
    updated.app_commission = max(0, updated.app_commission - member.app_commission)

    if updated.status in (TripStatus.FULL, TripStatus.ASSIGNED):
        TripStateMachine.ensure(updated.status, TripStatus.OPEN)
        updated.status = TripStatus.OPEN
        updated.driver_id = None
    return RemovalOutcome(trip=updated, member=member, cancelled=False)
