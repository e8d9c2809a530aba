# carpool/worker/runner.py
"""
Запускалка воркеров обслуживания поездок.
"""

from __future__ import annotations

import asyncio

from carpool.common.constants import TypeMsg
from carpool.common.logger import log_info
from carpool.core.trips.service import TripService
from carpool.worker.base import PeriodicWorker
from carpool.worker.sweepers import PaymentCheckWorker, TripExpiryWorker


def build_workers(trips: TripService) -> list[PeriodicWorker]:
    """Создаёт воркеры с интервалами из конфигурации."""
    from carpool.config import settings

    return [
        TripExpiryWorker(trips, interval=settings.sweeper.EXPIRY_INTERVAL),
        PaymentCheckWorker(trips, interval=settings.sweeper.PAYMENT_CHECK_INTERVAL),
    ]


async def run_workers(workers: list[PeriodicWorker], stop_event: asyncio.Event) -> None:
    """
    Запускает воркеры и держит их до установки stop_event.

    Args:
        workers: Воркеры для запуска
        stop_event: Событие остановки (SIGINT/SIGTERM)
    """
    for worker in workers:
        await worker.start()
    await log_info(f"Запущено {len(workers)} воркеров", type_msg=TypeMsg.INFO)

    try:
        await stop_event.wait()
    finally:
        for worker in workers:
            await worker.stop()
        await log_info("Воркеры остановлены", type_msg=TypeMsg.INFO)
