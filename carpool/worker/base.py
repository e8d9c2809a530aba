# carpool/worker/base.py
"""
Базовый класс для периодических воркеров.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod

from carpool.common.constants import TypeMsg
from carpool.common.errors import CarpoolError
from carpool.common.logger import log_error, log_info


class PeriodicWorker(ABC):
    """
    Базовый класс для воркеров, выполняющих задачу с фиксированным интервалом.
    Ошибка одного прохода логируется и не останавливает цикл.
    """

    def __init__(self, interval: float) -> None:
        """
        Args:
            interval: Пауза между проходами, секунды
        """
        self.interval = interval
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Имя воркера."""

    @abstractmethod
    async def run_once(self) -> None:
        """Один проход воркера."""

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Запускает фоновый цикл."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._loop())
        await log_info(f"Воркер {self.name} запущен (интервал {self.interval} с)", type_msg=TypeMsg.INFO)

    async def stop(self) -> None:
        """Останавливает цикл и дожидается его завершения."""
        if not self._running:
            return

        self._running = False
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        await log_info(f"Воркер {self.name} остановлен", type_msg=TypeMsg.INFO)

    async def _loop(self) -> None:
        while self._running:
            await self._run_safely()
            await asyncio.sleep(self.interval)

    async def _run_safely(self) -> None:
        try:
            await self.run_once()
        except asyncio.CancelledError:
            raise
        except (CarpoolError, ConnectionError, OSError) as e:
            await log_error(f"Ошибка в воркере {self.name}: {e}", exc_info=True)
