# carpool/core/pricing/service.py
"""
Калькулятор стоимости.

Переводит расстояние, число мест и тип бронирования в стоимость для
пассажира, долю водителя и комиссию платформы. Тарифы передаются явно
через PricingConfig, глобальное состояние не читается.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field

from carpool.common.constants import CAPACITY, BookingType
from carpool.common.errors import SettingsNotFoundError, ValidationError


# Точность округления перед ceil: гасит шум вида 30.000000000004
_CEIL_PRECISION = 6


def _ceil(value: float) -> int:
    """
    Округление вверх с защитой от шума плавающей точки.

    Перед ceil значение округляется до 6 знаков, поэтому дробная часть
    меньше 5e-7 отбрасывается: 30.000000000004 даёт 30, а не 31.
    Тарифы задаются с точностью до сотых, так что настоящая дробь
    такого размера в стоимости не возникает.
    """
    return math.ceil(round(value, _CEIL_PRECISION))


class BookingTypePricing(BaseModel):
    """Тариф для одного типа бронирования."""

    model_config = ConfigDict(frozen=True)

    base_fare: float = Field(..., ge=0, description="Базовая стоимость за место")
    per_km_rate: float = Field(..., ge=0, description="Стоимость километра за место")


class PricingConfig(BaseModel):
    """Тарифные параметры на момент запроса."""

    model_config = ConfigDict(frozen=True)

    tiers: dict[BookingType, BookingTypePricing] = Field(default_factory=dict)
    commission_rate: float = Field(0.1, ge=0, le=1, description="Доля комиссии платформы")
    minimum_fare: int = Field(0, ge=0, description="Минимальная стоимость поездки")
    bonus_amount: int = Field(20, ge=0, description="Размер бонусной скидки")

    def tier(self, booking_type: BookingType) -> BookingTypePricing:
        """
        Возвращает тариф для типа бронирования.

        Raises:
            SettingsNotFoundError: Тариф не настроен
        """
        pricing = self.tiers.get(booking_type)
        if pricing is None:
            raise SettingsNotFoundError(
                f"Тариф для {booking_type.value} не настроен",
                booking_type=booking_type.value,
            )
        return pricing


@dataclass(frozen=True)
class FareBreakdown:
    """Разбивка стоимости: passenger_fare == driver_share + app_commission."""
    passenger_fare: int
    driver_share: int
    app_commission: int


@dataclass(frozen=True)
class FareQuote:
    """Итоговая котировка с учётом минимальной стоимости и бонуса."""
    booking_type: BookingType
    seats: int
    distance_km: float
    duration_minutes: int
    original_fare: int
    final_fare: int
    breakdown: FareBreakdown
    minimum_fare_applied: bool = False
    warning: str | None = None
    discount: int = 0
    bonus_used: bool = False


def validate_seats(booking_type: BookingType, seats: int) -> None:
    """Проверяет, что число мест укладывается во вместимость типа бронирования."""
    capacity = CAPACITY[booking_type]
    if not 1 <= seats <= capacity:
        raise ValidationError(
            f"Для {booking_type.value} допустимо от 1 до {capacity} мест, запрошено {seats}",
            field="seats",
            value=seats,
        )


def split_fare(passenger_fare: int, commission_rate: float) -> FareBreakdown:
    """Делит стоимость на комиссию (с округлением вверх) и долю водителя."""
    commission = _ceil(passenger_fare * commission_rate)
    return FareBreakdown(
        passenger_fare=passenger_fare,
        driver_share=passenger_fare - commission,
        app_commission=commission,
    )


def calculate_fare(
    distance_km: float,
    seats: int,
    booking_type: BookingType,
    config: PricingConfig,
) -> FareBreakdown:
    """
    Рассчитывает стоимость для пассажира.

    passenger_fare = ceil((base_fare + distance_km * per_km_rate) * seats)

    Args:
        distance_km: Длина маршрута пассажира, км
        seats: Число мест
        booking_type: Тип бронирования
        config: Тарифные параметры

    Raises:
        ValidationError: Отрицательное расстояние или недопустимое число мест
        SettingsNotFoundError: Нет тарифа для типа бронирования
    """
    if not math.isfinite(distance_km) or distance_km < 0:
        raise ValidationError(f"Некорректное расстояние: {distance_km}", field="distance_km")
    validate_seats(booking_type, seats)

    tier = config.tier(booking_type)
    passenger_fare = _ceil((tier.base_fare + distance_km * tier.per_km_rate) * seats)
    return split_fare(passenger_fare, config.commission_rate)


def affordable_trips(balance: int, first_fare: int, fare: int, limit: int) -> int:
    """
    Сколько поездок пакета покрывает баланс.

    Первая поездка оплачивается по first_fare (со скидкой, если она
    есть), остальные по fare. При нулевой цене ответ ограничен limit.
    """
    if first_fare > balance:
        return 0
    if fare <= 0:
        return limit
    return 1 + (balance - first_fare) // fare


class FareCalculator:
    """Калькулятор котировок поверх фиксированного PricingConfig."""

    def __init__(self, config: PricingConfig) -> None:
        self.config = config

    def calculate(self, distance_km: float, seats: int, booking_type: BookingType) -> FareBreakdown:
        return calculate_fare(distance_km, seats, booking_type, self.config)

    def bonus_applicable(self, bonus_balance: int) -> bool:
        """Бонус применяется, только если баланс бонусов его покрывает."""
        return self.config.bonus_amount > 0 and bonus_balance >= self.config.bonus_amount

    def quote(
        self,
        distance_km: float,
        duration_minutes: int,
        seats: int,
        booking_type: BookingType,
        bonus_balance: int = 0,
        use_bonus: bool = True,
    ) -> FareQuote:
        """
        Формирует котировку.

        Минимальная стоимость никогда не отклоняет запрос: цена поднимается
        до минимума с предупреждением, исходная стоимость сохраняется.
        Бонусная скидка уменьшает итог ровно на свой размер (не ниже нуля).
        """
        computed = self.calculate(distance_km, seats, booking_type)
        original = computed.passenger_fare

        charged = original
        warning = None
        minimum_applied = False
        if original < self.config.minimum_fare:
            charged = self.config.minimum_fare
            minimum_applied = True
            warning = (
                f"Стоимость {original} ниже минимальной, применена минимальная "
                f"стоимость {self.config.minimum_fare}"
            )

        discount = 0
        bonus_used = False
        if use_bonus and self.bonus_applicable(bonus_balance):
            discount = min(self.config.bonus_amount, charged)
            charged -= discount
            bonus_used = True

        breakdown = computed if charged == original else split_fare(charged, self.config.commission_rate)
        return FareQuote(
            booking_type=booking_type,
            seats=seats,
            distance_km=distance_km,
            duration_minutes=duration_minutes,
            original_fare=original,
            final_fare=charged,
            breakdown=breakdown,
            minimum_fare_applied=minimum_applied,
            warning=warning,
            discount=discount,
            bonus_used=bonus_used,
        )
