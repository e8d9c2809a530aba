# carpool/core/pricing/repository.py
"""
Источник тарифных настроек (PostgreSQL).
"""

from __future__ import annotations

from carpool.common.constants import BookingType
from carpool.common.errors import SettingsNotFoundError
from carpool.common.logger import log_warning
from carpool.core.pricing.service import BookingTypePricing, PricingConfig
from carpool.infra.database import DatabaseManager


class SettingsRepository:
    """Читает тарифы по типам бронирования и глобальные параметры."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def get_pricing_config(self) -> PricingConfig:
        """
        Возвращает актуальные тарифные параметры.

        Глобальные параметры без строки в app_settings берутся по умолчанию
        (комиссия 10%, без минимальной стоимости).

        Raises:
            SettingsNotFoundError: Не настроен ни один тариф
        """
        tier_rows = await self._db.fetch(
            "SELECT booking_type, base_fare, per_km_rate FROM booking_type_settings"
        )
        if not tier_rows:
            raise SettingsNotFoundError("Тарифы по типам бронирования не настроены")

        tiers = {
            BookingType(row["booking_type"]): BookingTypePricing(
                base_fare=float(row["base_fare"]),
                per_km_rate=float(row["per_km_rate"]),
            )
            for row in tier_rows
        }

        app_row = await self._db.fetchrow(
            "SELECT commission_rate, minimum_fare, bonus_amount FROM app_settings WHERE id = 1"
        )
        if app_row is None:
            await log_warning("Глобальные тарифные параметры не заданы, используются значения по умолчанию")
            return PricingConfig(tiers=tiers)

        return PricingConfig(
            tiers=tiers,
            commission_rate=float(app_row["commission_rate"]),
            minimum_fare=app_row["minimum_fare"],
            bonus_amount=app_row["bonus_amount"],
        )
