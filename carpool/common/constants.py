# carpool/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class BookingType(str, Enum):
    """Тип бронирования: определяет вместимость поездки и тариф."""
    SINGLE = "SINGLE"
    DOUBLE = "DOUBLE"
    TRIPLE = "TRIPLE"


class TripStatus(str, Enum):
    """Статусы поездки."""
    OPEN = "OPEN"
    FULL = "FULL"
    ASSIGNED = "ASSIGNED"
    STARTED = "STARTED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class TripType(str, Enum):
    """Тип запроса поездки."""
    ONE_WAY = "ONE_WAY"
    ROUND_TRIP = "ROUND_TRIP"


class ActorRole(str, Enum):
    """Роль участника при выходе из поездки."""
    PASSENGER = "passenger"
    DRIVER = "driver"


class TransactionKind(str, Enum):
    """Виды денежных операций по балансу."""
    TRIP_PAYMENT = "trip_payment"
    TRIP_EARNING = "trip_earning"
    LEAVE_PENALTY = "leave_penalty"
    BONUS_USED = "bonus_used"


# Вместимость поездки по типу бронирования
CAPACITY: dict[BookingType, int] = {
    BookingType.SINGLE: 1,
    BookingType.DOUBLE: 2,
    BookingType.TRIPLE: 3,
}

# Статусы, в которых поездка ещё не началась
PRE_START_STATUSES: tuple[TripStatus, ...] = (
    TripStatus.OPEN,
    TripStatus.FULL,
    TripStatus.ASSIGNED,
)

# Статусы, в которых обязательство пользователя считается активным
ACTIVE_STATUSES: tuple[TripStatus, ...] = (
    TripStatus.OPEN,
    TripStatus.FULL,
    TripStatus.ASSIGNED,
    TripStatus.STARTED,
)
