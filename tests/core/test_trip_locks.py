# tests/core/test_trip_locks.py
"""
Тесты для реестра блокировок поездок.
"""

from __future__ import annotations

import asyncio
import gc

import pytest

from carpool.core.trips.locks import TripLockRegistry


class TestTripLockRegistry:
    """Тесты сериализации операций над поездкой."""

    def test_same_lock_per_trip(self) -> None:
        """Для одной поездки возвращается одна блокировка."""
        registry = TripLockRegistry()
        lock = registry.get("t1")

        assert registry.get("t1") is lock
        assert registry.get("t2") is not lock

    def test_unused_locks_released(self) -> None:
        """Блокировка без владельцев удаляется из реестра."""
        registry = TripLockRegistry()
        lock = registry.get("t1")
        assert len(registry) == 1

        del lock
        gc.collect()

        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_operations_serialized(self) -> None:
        """Операции над одной поездкой не пересекаются."""
        registry = TripLockRegistry()
        order: list[str] = []

        async def operation(name: str) -> None:
            async with registry.hold("t1"):
                order.append(f"{name}:start")
                await asyncio.sleep(0.01)
                order.append(f"{name}:end")

        await asyncio.gather(operation("a"), operation("b"))

        assert order == ["a:start", "a:end", "b:start", "b:end"]
