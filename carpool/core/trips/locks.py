# carpool/core/trips/locks.py
"""
Реестр блокировок по поездкам внутри процесса.

Дополняет блокировку строки в БД: операции над одной поездкой
в этом процессе выполняются строго по очереди.
"""

from __future__ import annotations

import asyncio
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator


class TripLockRegistry:
    """asyncio.Lock на каждую поездку; неиспользуемые блокировки освобождаются."""

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def get(self, trip_id: str) -> asyncio.Lock:
        lock = self._locks.get(trip_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[trip_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, trip_id: str) -> AsyncIterator[None]:
        """Удерживает блокировку поездки на время блока."""
        lock = self.get(trip_id)
        async with lock:
            yield

    def __len__(self) -> int:
        return len(self._locks)
