# carpool/core/pricing/__init__.py
"""
Расчёт стоимости поездки.
"""

from carpool.core.pricing.service import (
    BookingTypePricing,
    FareBreakdown,
    FareCalculator,
    FareQuote,
    PricingConfig,
    calculate_fare,
    split_fare,
)

__all__ = [
    "BookingTypePricing",
    "FareBreakdown",
    "FareCalculator",
    "FareQuote",
    "PricingConfig",
    "calculate_fare",
    "split_fare",
]
