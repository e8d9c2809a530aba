# carpool/worker/sweepers.py
"""
Воркеры обслуживания поездок: истечение срока и контроль оплаты.
"""

from __future__ import annotations

from carpool.common.constants import TypeMsg
from carpool.common.logger import log_info
from carpool.core.trips.service import TripService
from carpool.worker.base import PeriodicWorker


class TripExpiryWorker(PeriodicWorker):
    """Отменяет не начавшиеся поездки с прошедшей датой."""

    def __init__(self, trips: TripService, interval: float = 3600) -> None:
        super().__init__(interval)
        self._trips = trips

    @property
    def name(self) -> str:
        return "TripExpiryWorker"

    async def run_once(self) -> None:
        cancelled = await self._trips.expire_trips()
        if cancelled:
            await log_info(f"Отменено просроченных поездок: {len(cancelled)}", type_msg=TypeMsg.INFO)


class PaymentCheckWorker(PeriodicWorker):
    """Подтверждает оплату, напоминает и отменяет неоплаченные поездки."""

    def __init__(self, trips: TripService, interval: float = 60) -> None:
        super().__init__(interval)
        self._trips = trips

    @property
    def name(self) -> str:
        return "PaymentCheckWorker"

    async def run_once(self) -> None:
        report = await self._trips.check_pending_payments()
        if report.notified or report.reminded:
            await log_info(
                f"Уведомления об оплате: первичных={len(report.notified)}, напоминаний={len(report.reminded)}",
                type_msg=TypeMsg.DEBUG,
            )
