# carpool/core/trips/state_machine.py
"""
Конечный автомат жизненного цикла поездки и временные правила переходов.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from carpool.common.constants import ActorRole, TripStatus
from carpool.common.errors import InvalidTransitionError, LeaveNotAllowedError, OutsideStartWindowError


class TripStateMachine:
    """Допустимые переходы статусов поездки."""

    ALLOWED_TRANSITIONS: dict[TripStatus, list[TripStatus]] = {
        TripStatus.OPEN: [TripStatus.FULL, TripStatus.CANCELLED],
        # FULL -> OPEN: участник вышел
        TripStatus.FULL: [TripStatus.ASSIGNED, TripStatus.OPEN, TripStatus.CANCELLED],
        # ASSIGNED -> FULL: вышел водитель; ASSIGNED -> OPEN: вышел участник
        TripStatus.ASSIGNED: [TripStatus.STARTED, TripStatus.FULL, TripStatus.OPEN, TripStatus.CANCELLED],
        TripStatus.STARTED: [TripStatus.COMPLETED],
        TripStatus.COMPLETED: [],
        TripStatus.CANCELLED: [],
    }

    @staticmethod
    def can_transition(current_status: TripStatus | str, new_status: TripStatus | str) -> bool:
        try:
            current = TripStatus(current_status)
            new = TripStatus(new_status)
        except ValueError:
            return False
        return new in TripStateMachine.ALLOWED_TRANSITIONS.get(current, [])

    @classmethod
    def ensure(cls, current_status: TripStatus, new_status: TripStatus) -> None:
        """
        Проверяет переход.

        Raises:
            InvalidTransitionError: Переход не разрешён
        """
        if not cls.can_transition(current_status, new_status):
            raise InvalidTransitionError(
                f"Переход {TripStatus(current_status).value} -> {TripStatus(new_status).value} запрещён",
                current=TripStatus(current_status).value,
                target=TripStatus(new_status).value,
            )


@dataclass(frozen=True)
class LeaveRule:
    """Двухступенчатое правило выхода: запрет, затем штраф, затем бесплатно."""
    forbidden_within: timedelta
    penalty_within: timedelta
    penalty: int


@dataclass(frozen=True)
class LifecyclePolicy:
    """Временные параметры жизненного цикла."""
    start_window_before: timedelta = timedelta(minutes=60)
    start_window_after: timedelta = timedelta(minutes=30)
    passenger_leave: LeaveRule = LeaveRule(timedelta(hours=6), timedelta(hours=12), 30)
    driver_leave: LeaveRule = LeaveRule(timedelta(hours=6), timedelta(hours=12), 30)
    conflict_buffer: timedelta = timedelta(hours=2)
    default_commitment: timedelta = timedelta(hours=2)
    driver_conflict_window: timedelta = timedelta(hours=2)
    payment_notice_before: timedelta = timedelta(hours=8)
    payment_grace: timedelta = timedelta(minutes=60)

    @classmethod
    def from_settings(cls) -> "LifecyclePolicy":
        """Собирает политику из секции lifecycle конфигурации."""
        from carpool.config import settings

        conf = settings.lifecycle
        return cls(
            start_window_before=timedelta(minutes=conf.START_WINDOW_BEFORE_MINUTES),
            start_window_after=timedelta(minutes=conf.START_WINDOW_AFTER_MINUTES),
            passenger_leave=LeaveRule(
                timedelta(hours=conf.PASSENGER_LEAVE_FORBIDDEN_HOURS),
                timedelta(hours=conf.PASSENGER_LEAVE_PENALTY_HOURS),
                conf.PASSENGER_LEAVE_PENALTY,
            ),
            driver_leave=LeaveRule(
                timedelta(hours=conf.DRIVER_LEAVE_FORBIDDEN_HOURS),
                timedelta(hours=conf.DRIVER_LEAVE_PENALTY_HOURS),
                conf.DRIVER_LEAVE_PENALTY,
            ),
            conflict_buffer=timedelta(hours=conf.CONFLICT_BUFFER_HOURS),
            default_commitment=timedelta(hours=conf.DEFAULT_COMMITMENT_HOURS),
            driver_conflict_window=timedelta(hours=conf.DRIVER_CONFLICT_HOURS),
            payment_notice_before=timedelta(hours=conf.PAYMENT_NOTICE_HOURS),
            payment_grace=timedelta(minutes=conf.PAYMENT_GRACE_MINUTES),
        )

    def leave_rule(self, role: ActorRole) -> LeaveRule:
        return self.driver_leave if role == ActorRole.DRIVER else self.passenger_leave


def check_start_window(start_time: datetime, now: datetime, policy: LifecyclePolicy) -> None:
    """
    Проверяет, что старт укладывается в окно [start - before, start + after].

    Raises:
        OutsideStartWindowError: reason = too_early | too_late
    """
    opens_at = start_time - policy.start_window_before
    closes_at = start_time + policy.start_window_after

    if now < opens_at:
        reason = OutsideStartWindowError.TOO_EARLY
    elif now > closes_at:
        reason = OutsideStartWindowError.TOO_LATE
    else:
        return

    raise OutsideStartWindowError(
        "Начать поездку можно не раньше чем за "
        f"{int(policy.start_window_before.total_seconds() // 60)} мин и не позже чем через "
        f"{int(policy.start_window_after.total_seconds() // 60)} мин от времени отправления",
        reason=reason,
        window_opens_at=opens_at.isoformat(),
        window_closes_at=closes_at.isoformat(),
    )


def leave_penalty(start_time: datetime, now: datetime, role: ActorRole, policy: LifecyclePolicy) -> int:
    """
    Возвращает штраф за выход из поездки.

    Меньше forbidden_within до старта: выход запрещён; меньше
    penalty_within: фиксированный штраф; иначе бесплатно.

    Raises:
        LeaveNotAllowedError: До старта слишком мало времени
    """
    rule = policy.leave_rule(role)
    time_to_start = start_time - now

    if time_to_start < rule.forbidden_within:
        raise LeaveNotAllowedError(
            f"Выход из поездки запрещён менее чем за {rule.forbidden_within} до старта",
            role=role.value,
            hours_to_start=round(time_to_start.total_seconds() / 3600, 2),
        )
    if time_to_start < rule.penalty_within:
        return rule.penalty
    return 0
