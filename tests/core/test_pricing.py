# tests/core/test_pricing.py
"""
Тесты для расчёта стоимости поездки.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from carpool.common.constants import CAPACITY, BookingType
from carpool.common.errors import SettingsNotFoundError, ValidationError
from carpool.core.pricing.repository import SettingsRepository
from carpool.core.pricing.service import (
    FareCalculator,
    PricingConfig,
    affordable_trips,
    calculate_fare,
    split_fare,
    validate_seats,
)
from fakes import DEFAULT_PRICING


class TestCalculateFare:
    """Тесты формулы стоимости."""

    @pytest.mark.parametrize("booking_type, seats, fare, commission, driver", [
        (BookingType.TRIPLE, 1, 55, 6, 49),
        (BookingType.TRIPLE, 2, 110, 11, 99),
        (BookingType.DOUBLE, 1, 83, 9, 74),
        (BookingType.SINGLE, 1, 110, 11, 99),
    ])
    def test_fifty_km(
        self, booking_type: BookingType, seats: int, fare: int, commission: int, driver: int,
    ) -> None:
        """Стоимость 50 км по тарифам по умолчанию."""
        breakdown = calculate_fare(50.0, seats, booking_type, DEFAULT_PRICING)

        assert breakdown.passenger_fare == fare
        assert breakdown.app_commission == commission
        assert breakdown.driver_share == driver

    def test_fraction_rounded_up(self) -> None:
        """Дробная стоимость округляется вверх."""
        assert calculate_fare(10.3, 1, BookingType.DOUBLE, DEFAULT_PRICING).passenger_fare == 24

    def test_float_noise_not_rounded_up(self) -> None:
        """Шум плавающей точки не добавляет лишнюю единицу."""
        breakdown = calculate_fare(25.0, 1, BookingType.TRIPLE, DEFAULT_PRICING)
        assert breakdown.passenger_fare == 30
        assert breakdown.app_commission == 3

    def test_zero_distance(self) -> None:
        """Нулевое расстояние: только базовая стоимость."""
        assert calculate_fare(0.0, 3, BookingType.TRIPLE, DEFAULT_PRICING).passenger_fare == 15

    @pytest.mark.parametrize("distance", [-1.0, float("nan"), float("inf")])
    def test_invalid_distance(self, distance: float) -> None:
        """Отрицательное и нечисловое расстояние отклоняется."""
        with pytest.raises(ValidationError):
            calculate_fare(distance, 1, BookingType.TRIPLE, DEFAULT_PRICING)

    def test_missing_tier(self) -> None:
        """Нет тарифа для типа бронирования."""
        with pytest.raises(SettingsNotFoundError):
            calculate_fare(10.0, 1, BookingType.SINGLE, PricingConfig())

    @pytest.mark.parametrize("booking_type", list(BookingType))
    def test_monotonic(self, booking_type: BookingType) -> None:
        """Стоимость не убывает с ростом расстояния и числа мест."""
        capacity = CAPACITY[booking_type]
        previous = 0
        for distance in (0.0, 0.4, 1.0, 12.7, 50.0, 230.5):
            fares = [
                calculate_fare(distance, seats, booking_type, DEFAULT_PRICING).passenger_fare
                for seats in range(1, capacity + 1)
            ]
            assert fares == sorted(fares)
            assert fares[0] >= previous
            previous = fares[0]

    def test_split_invariant(self) -> None:
        """Доля водителя и комиссия в сумме дают стоимость."""
        for fare in (1, 9, 10, 11, 99, 101):
            breakdown = split_fare(fare, 0.1)
            assert breakdown.driver_share + breakdown.app_commission == fare


class TestValidateSeats:
    """Тесты проверки числа мест."""

    @pytest.mark.parametrize("booking_type, seats", [
        (BookingType.SINGLE, 2),
        (BookingType.DOUBLE, 3),
        (BookingType.TRIPLE, 4),
        (BookingType.TRIPLE, 0),
    ])
    def test_rejected(self, booking_type: BookingType, seats: int) -> None:
        """Места вне вместимости отклоняются."""
        with pytest.raises(ValidationError):
            validate_seats(booking_type, seats)

    def test_accepted(self) -> None:
        """Вся вместимость допустима."""
        validate_seats(BookingType.TRIPLE, 3)


class TestQuote:
    """Тесты котировки."""

    def test_no_bonus_when_balance_short(self) -> None:
        """Бонус не применяется, если его баланс меньше размера скидки."""
        quote = FareCalculator(DEFAULT_PRICING).quote(50.0, 60, 1, BookingType.TRIPLE, bonus_balance=10)

        assert quote.final_fare == 55
        assert quote.discount == 0
        assert quote.bonus_used is False

    def test_discount_not_below_zero(self) -> None:
        """Скидка не делает стоимость отрицательной."""
        quote = FareCalculator(DEFAULT_PRICING).quote(5.0, 10, 1, BookingType.TRIPLE, bonus_balance=20)

        assert quote.discount == 10
        assert quote.final_fare == 0

    def test_minimum_then_bonus(self) -> None:
        """Сначала минимальная стоимость, затем бонус; разбивка пересчитывается."""
        config = DEFAULT_PRICING.model_copy(update={"minimum_fare": 60})
        quote = FareCalculator(config).quote(50.0, 60, 1, BookingType.TRIPLE, bonus_balance=20)

        assert quote.original_fare == 55
        assert quote.minimum_fare_applied is True
        assert quote.final_fare == 40
        assert quote.breakdown.passenger_fare == 40
        assert quote.breakdown.app_commission == 4
        assert quote.breakdown.driver_share == 36

    def test_bonus_disabled(self) -> None:
        """use_bonus=False игнорирует бонусы."""
        quote = FareCalculator(DEFAULT_PRICING).quote(
            50.0, 60, 1, BookingType.TRIPLE, bonus_balance=100, use_bonus=False,
        )
        assert quote.final_fare == 55
        assert quote.bonus_used is False


class TestSettingsRepository:
    """Тесты чтения тарифов из БД."""

    @pytest.mark.asyncio
    async def test_reads_tiers_and_globals(self, mock_db: AsyncMock) -> None:
        """Тарифы и глобальные параметры читаются из таблиц."""
        mock_db.fetch.return_value = [
            {"booking_type": "SINGLE", "base_fare": 10, "per_km_rate": 2},
            {"booking_type": "TRIPLE", "base_fare": 5, "per_km_rate": 1},
        ]
        mock_db.fetchrow.return_value = {"commission_rate": 0.15, "minimum_fare": 30, "bonus_amount": 25}

        config = await SettingsRepository(mock_db).get_pricing_config()

        assert config.tier(BookingType.SINGLE).base_fare == 10
        assert config.commission_rate == 0.15
        assert config.minimum_fare == 30
        assert config.bonus_amount == 25
        with pytest.raises(SettingsNotFoundError):
            config.tier(BookingType.DOUBLE)

    @pytest.mark.asyncio
    async def test_defaults_without_app_settings(self, mock_db: AsyncMock) -> None:
        """Без строки app_settings используются значения по умолчанию."""
        mock_db.fetch.return_value = [{"booking_type": "TRIPLE", "base_fare": 5, "per_km_rate": 1}]

        config = await SettingsRepository(mock_db).get_pricing_config()

        assert config.commission_rate == 0.1
        assert config.minimum_fare == 0
        assert config.bonus_amount == 20

    @pytest.mark.asyncio
    async def test_no_tiers(self, mock_db: AsyncMock) -> None:
        """Без тарифов запрос прерывается фатальной ошибкой."""
        with pytest.raises(SettingsNotFoundError) as exc_info:
            await SettingsRepository(mock_db).get_pricing_config()
        assert exc_info.value.is_recoverable is False


class TestAffordableTrips:
    """Тесты покрытия пакета балансом."""

    @pytest.mark.parametrize("balance, first_fare, fare, expected", [
        (120, 55, 55, 2),
        (90, 35, 55, 2),
        (34, 35, 55, 0),
        (35, 35, 55, 1),
        (0, 0, 55, 1),
    ])
    def test_counts(self, balance: int, first_fare: int, fare: int, expected: int) -> None:
        """Первая поездка по своей цене, остальные по полной."""
        assert affordable_trips(balance, first_fare, fare, limit=5) == expected

    def test_free_trips_limited(self) -> None:
        """Бесплатные поездки ограничены размером пакета."""
        assert affordable_trips(0, 0, 0, limit=3) == 3
