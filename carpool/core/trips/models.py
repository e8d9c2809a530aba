# carpool/core/trips/models.py
"""
Модели домена совместных поездок.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

from carpool.common.constants import CAPACITY, BookingType, TripStatus, TripType
from carpool.core.geo.kernel import GeoPoint
from carpool.core.pricing.service import FareQuote


# =============================================================================
# СУЩНОСТИ
# =============================================================================

class TripMember(BaseModel):
    """Обязательство одного пассажира в поездке."""

    trip_id: str
    user_id: str
    pickup: GeoPoint
    drop: GeoPoint
    seats_booked: int = Field(..., ge=1, le=3)
    passenger_fare: int = Field(0, ge=0)
    driver_share: int = Field(0, ge=0)
    app_commission: int = Field(0, ge=0)


class Trip(BaseModel):
    """
    Направленная поездка на конкретную дату и время.

    Поездка владеет набором участников; origin/destination расширяются
    при присоединении новых участников.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    creator_id: str
    driver_id: str | None = None
    origin: GeoPoint
    destination: GeoPoint
    origin_label: str | None = None
    destination_label: str | None = None
    start_time: datetime
    end_time: datetime | None = None
    trip_date: str = Field(..., description="Гражданская дата поездки, YYYY-MM-DD")
    booking_type: BookingType
    status: TripStatus = TripStatus.OPEN
    total_fare: int = 0
    driver_share: int = 0
    app_commission: int = 0
    distance_km: float = 0.0
    duration_minutes: int = 0
    user_has_enough_money: bool = False
    is_paid: bool = False
    payment_notice_at: datetime | None = None
    payment_reminders_sent: int = 0
    members: list[TripMember] = Field(default_factory=list)

    @property
    def capacity(self) -> int:
        return CAPACITY[self.booking_type]

    @property
    def seats_booked(self) -> int:
        return sum(m.seats_booked for m in self.members)

    @property
    def available_seats(self) -> int:
        return self.capacity - self.seats_booked

    def member(self, user_id: str) -> TripMember | None:
        """Возвращает участника по user_id."""
        return next((m for m in self.members if m.user_id == user_id), None)

    def member_ids(self) -> list[str]:
        return [m.user_id for m in self.members]


@dataclass(frozen=True)
class CommitmentWindow:
    """Интервал [start, end) активного обязательства."""
    trip_id: str
    start: datetime
    end: datetime | None = None

    def effective_end(self, default_length: timedelta) -> datetime:
        return self.end if self.end is not None else self.start + default_length


@dataclass(frozen=True)
class UserFunds:
    """Баланс и бонусы пользователя."""
    user_id: str
    balance: int
    bonus: int


# =============================================================================
# КОМАНДЫ И ЗАПРОСЫ
# =============================================================================

class RequestTripCommand(BaseModel):
    """Запрос пассажира на одну или несколько поездок."""

    user_id: str
    origin: GeoPoint
    destination: GeoPoint
    origin_label: str | None = None
    destination_label: str | None = None
    trip_dates: list[str] = Field(..., min_length=1, description="Даты YYYY-MM-DD или DD-MM-YYYY")
    start_time: str = Field(..., description="Время отправления HH:MM")
    return_time: str | None = Field(None, description="Время обратной поездки HH:MM")
    trip_type: TripType = TripType.ONE_WAY
    booking_type: BookingType
    seats_requested: int = Field(..., ge=1, le=3)

    @model_validator(mode="after")
    def check_return_time(self) -> "RequestTripCommand":
        if self.trip_type == TripType.ROUND_TRIP and not self.return_time:
            raise ValueError("Для ROUND_TRIP требуется return_time")
        return self


class JoinTripCommand(BaseModel):
    """Присоединение пассажира к существующей поездке."""

    user_id: str
    trip_id: str
    pickup: GeoPoint
    drop: GeoPoint
    seats_requested: int = Field(..., ge=1, le=3)


class NearbyTripsQuery(BaseModel):
    """Поиск открытых попутных поездок."""

    origin: GeoPoint
    destination: GeoPoint
    start_time: datetime
    seats_requested: int = Field(1, ge=1, le=3)
    skip: int = Field(0, ge=0)
    take: int = Field(10, ge=1, le=100)


class QuoteFareQuery(BaseModel):
    """Предварительный расчёт стоимости."""

    origin: GeoPoint
    destination: GeoPoint
    booking_type: BookingType
    seats_requested: int = Field(..., ge=1, le=3)
    user_id: str | None = None


# =============================================================================
# РЕЗУЛЬТАТЫ
# =============================================================================

@dataclass(frozen=True)
class NearbyTrip:
    """Подходящая попутная поездка."""
    trip: Trip
    available_seats: int
    pickup_distance_m: float
    dropoff_distance_m: float
    pickup_t: float
    dropoff_t: float


@dataclass
class RequestTripResult:
    """Результат запроса поездок."""
    quote: FareQuote
    created_trips: list[Trip] = field(default_factory=list)
    nearby_trips: list[NearbyTrip] = field(default_factory=list)
    max_trips_affordable: int = 0
    user_has_enough_money: bool = False
    total_trip_cost: int = 0

    @property
    def bonus_used(self) -> bool:
        return self.quote.bonus_used and bool(self.created_trips)


@dataclass(frozen=True)
class LeaveResult:
    """Результат выхода из поездки."""
    trip: Trip
    penalty: int
    trip_cancelled: bool


@dataclass
class PaymentCheckReport:
    """Итог проверки неоплаченных поездок."""
    funded: list[str] = field(default_factory=list)
    notified: list[str] = field(default_factory=list)
    reminded: list[str] = field(default_factory=list)
    cancelled: list[str] = field(default_factory=list)
