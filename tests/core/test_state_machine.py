# tests/core/test_state_machine.py
"""
Тесты для конечного автомата поездки и временных правил.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from carpool.common.constants import ActorRole, TripStatus
from carpool.common.errors import InvalidTransitionError, LeaveNotAllowedError, OutsideStartWindowError
from carpool.core.trips.state_machine import (
    LeaveRule,
    LifecyclePolicy,
    TripStateMachine,
    check_start_window,
    leave_penalty,
)


START = datetime(2026, 1, 11, 8, 0, tzinfo=timezone.utc)
POLICY = LifecyclePolicy()


class TestTripStateMachine:
    """Тесты переходов статусов."""

    @pytest.mark.parametrize("current, new", [
        (TripStatus.OPEN, TripStatus.FULL),
        (TripStatus.FULL, TripStatus.ASSIGNED),
        (TripStatus.FULL, TripStatus.OPEN),
        (TripStatus.ASSIGNED, TripStatus.STARTED),
        (TripStatus.ASSIGNED, TripStatus.FULL),
        (TripStatus.ASSIGNED, TripStatus.OPEN),
        (TripStatus.STARTED, TripStatus.COMPLETED),
        (TripStatus.OPEN, TripStatus.CANCELLED),
    ])
    def test_allowed(self, current: TripStatus, new: TripStatus) -> None:
        """Разрешённые переходы."""
        assert TripStateMachine.can_transition(current, new)
        TripStateMachine.ensure(current, new)

    @pytest.mark.parametrize("current, new", [
        (TripStatus.OPEN, TripStatus.STARTED),
        (TripStatus.OPEN, TripStatus.ASSIGNED),
        (TripStatus.STARTED, TripStatus.CANCELLED),
        (TripStatus.COMPLETED, TripStatus.OPEN),
        (TripStatus.CANCELLED, TripStatus.OPEN),
    ])
    def test_forbidden(self, current: TripStatus, new: TripStatus) -> None:
        """Запрещённые переходы."""
        assert not TripStateMachine.can_transition(current, new)
        with pytest.raises(InvalidTransitionError):
            TripStateMachine.ensure(current, new)

    def test_accepts_strings(self) -> None:
        """Статусы можно передавать строками."""
        assert TripStateMachine.can_transition("OPEN", "FULL")
        assert not TripStateMachine.can_transition("OPEN", "UNKNOWN")


class TestStartWindow:
    """Тесты окна старта."""

    @pytest.mark.parametrize("offset_minutes", [-60, -30, 0, 30])
    def test_inside(self, offset_minutes: int) -> None:
        """Границы окна включительны."""
        check_start_window(START, START + timedelta(minutes=offset_minutes), POLICY)

    def test_too_early(self) -> None:
        """Раньше чем за час."""
        with pytest.raises(OutsideStartWindowError) as exc_info:
            check_start_window(START, START - timedelta(minutes=61), POLICY)
        assert exc_info.value.reason == OutsideStartWindowError.TOO_EARLY

    def test_too_late(self) -> None:
        """Позже чем через 30 минут."""
        with pytest.raises(OutsideStartWindowError) as exc_info:
            check_start_window(START, START + timedelta(minutes=31), POLICY)
        assert exc_info.value.reason == OutsideStartWindowError.TOO_LATE


class TestLeavePenalty:
    """Тесты штрафа за выход."""

    @pytest.mark.parametrize("hours, expected", [(6, 30), (11.9, 30), (12, 0), (48, 0)])
    def test_passenger(self, hours: float, expected: int) -> None:
        """Штраф 30 в интервале [6, 12) часов до старта."""
        now = START - timedelta(hours=hours)
        assert leave_penalty(START, now, ActorRole.PASSENGER, POLICY) == expected

    @pytest.mark.parametrize("role", [ActorRole.PASSENGER, ActorRole.DRIVER])
    def test_forbidden_close_to_start(self, role: ActorRole) -> None:
        """Менее 6 часов до старта выход запрещён."""
        with pytest.raises(LeaveNotAllowedError):
            leave_penalty(START, START - timedelta(hours=5, minutes=59), role, POLICY)

    def test_driver_rule_is_separate(self) -> None:
        """Правило водителя настраивается отдельно."""
        policy = LifecyclePolicy(driver_leave=LeaveRule(timedelta(hours=2), timedelta(hours=24), 50))

        assert leave_penalty(START, START - timedelta(hours=3), ActorRole.DRIVER, policy) == 50
        with pytest.raises(LeaveNotAllowedError):
            leave_penalty(START, START - timedelta(hours=3), ActorRole.PASSENGER, policy)
