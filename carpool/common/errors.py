# carpool/common/errors.py
"""
Типизированные ошибки движка.

Каждая ошибка несёт стабильный код и словарь деталей, чтобы вызывающий слой
мог преобразовать её в ответ пользователю, не теряя вид ошибки.
"""

from __future__ import annotations

from typing import Any


class CarpoolError(Exception):
    """Базовая ошибка движка."""

    code: str = "carpool_error"
    is_recoverable: bool = True

    def __init__(self, message: str = "", **details: Any) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details: dict[str, Any] = details

    def to_dict(self) -> dict[str, Any]:
        """Сериализует ошибку для вызывающего слоя."""
        return {
            "code": self.code,
            "message": self.message,
            "recoverable": self.is_recoverable,
            "details": self.details,
        }


# =============================================================================
# ОШИБКИ ВХОДНЫХ ДАННЫХ
# =============================================================================

class ValidationError(CarpoolError):
    """Некорректные или вне допустимого диапазона входные данные."""
    code = "validation_error"


class DecodeError(ValidationError):
    """Повреждённая закодированная полилиния."""
    code = "decode_error"


# =============================================================================
# ОШИБКИ БРОНИРОВАНИЯ
# =============================================================================

class ConflictError(CarpoolError):
    """Пересечение по времени с другим активным обязательством."""
    code = "conflict"


class CapacityExceededError(CarpoolError):
    """Запрошено больше мест, чем осталось в поездке."""
    code = "capacity_exceeded"


class TripNotFoundError(CarpoolError):
    """Поездка не найдена."""
    code = "trip_not_found"


class UserNotFoundError(CarpoolError):
    """Пользователь не найден."""
    code = "user_not_found"


class TripNotAvailableError(CarpoolError):
    """Поездка в текущем состоянии не принимает операцию."""
    code = "trip_not_available"


class AlreadyMemberError(CarpoolError):
    """Пользователь уже участвует в поездке."""
    code = "already_member"


class NotTripMemberError(CarpoolError):
    """Пользователь не является участником поездки."""
    code = "not_trip_member"


class NotTripDriverError(CarpoolError):
    """Операцию выполняет не назначенный водитель."""
    code = "not_trip_driver"


# =============================================================================
# ОШИБКИ ЖИЗНЕННОГО ЦИКЛА
# =============================================================================

class InvalidTransitionError(CarpoolError):
    """Недопустимый переход статуса поездки."""
    code = "invalid_transition"


class OutsideStartWindowError(CarpoolError):
    """
    Старт поездки вне окна [-60 мин, +30 мин] от плана.

    details["reason"] принимает значения ``too_early`` или ``too_late``.
    """
    code = "outside_start_window"

    TOO_EARLY = "too_early"
    TOO_LATE = "too_late"

    @property
    def reason(self) -> str:
        return self.details.get("reason", "")


class LeaveNotAllowedError(CarpoolError):
    """До старта осталось слишком мало времени, выход запрещён."""
    code = "leave_not_allowed"


class ConcurrentUpdateError(CarpoolError):
    """Строка поездки изменилась между чтением и записью."""
    code = "concurrent_update"


# =============================================================================
# ФАТАЛЬНЫЕ ОШИБКИ И ВНЕШНИЕ ЗАВИСИМОСТИ
# =============================================================================

class SettingsNotFoundError(CarpoolError):
    """Нет тарифных настроек, запрос прерывается без повтора."""
    code = "settings_not_found"
    is_recoverable = False


class InsufficientBalanceError(CarpoolError):
    """Недостаточно средств на балансе."""
    code = "insufficient_balance"

    def __init__(self, message: str = "", *, fatal: bool = False, **details: Any) -> None:
        super().__init__(message, **details)
        # При расчёте по завершении поездки ошибка фатальна для перехода
        self.is_recoverable = not fatal


class RouteProviderError(CarpoolError):
    """Сбой внешнего провайдера маршрутов (таймаут, сеть, ответ не OK)."""
    code = "route_provider_error"
