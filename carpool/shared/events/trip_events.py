# carpool/shared/events/trip_events.py
"""
События домена совместных поездок.
"""

from __future__ import annotations

from typing import Literal

from carpool.shared.events.base import DomainEvent


class TripCreated(DomainEvent):
    """Событие: поездка создана по запросу пассажира."""

    event_type: Literal["trip.created"] = "trip.created"

    trip_id: str
    creator_id: str
    booking_type: str
    status: str
    trip_date: str
    seats_booked: int
    total_fare: int
    user_has_enough_money: bool


class TripMemberJoined(DomainEvent):
    """Событие: пассажир присоединился к поездке."""

    event_type: Literal["trip.member_joined"] = "trip.member_joined"

    trip_id: str
    user_id: str
    seats_booked: int
    passenger_fare: int
    status: str


class TripMemberLeft(DomainEvent):
    """Событие: пассажир вышел из поездки."""

    event_type: Literal["trip.member_left"] = "trip.member_left"

    trip_id: str
    user_id: str
    penalty: int = 0
    trip_cancelled: bool = False


class TripStatusChanged(DomainEvent):
    """Событие: статус поездки изменён."""

    event_type: Literal["trip.status_changed"] = "trip.status_changed"

    trip_id: str
    old_status: str
    new_status: str
    driver_id: str | None = None
    reason: str | None = None


class TripBecameFull(DomainEvent):
    """Событие: поездка заполнена и ждёт водителя (рассылка водителям)."""

    event_type: Literal["trip.full"] = "trip.full"

    trip_id: str
    trip_date: str
    booking_type: str
    origin_label: str | None = None
    destination_label: str | None = None


class TripCompleted(DomainEvent):
    """Событие: поездка завершена и рассчитана."""

    event_type: Literal["trip.completed"] = "trip.completed"

    trip_id: str
    driver_id: str
    total_fare: int
    driver_share: int
    app_commission: int
    member_ids: list[str]


class TripCancelled(DomainEvent):
    """Событие: поездка отменена."""

    event_type: Literal["trip.cancelled"] = "trip.cancelled"

    trip_id: str
    reason: str
