# tests/worker/test_sweepers.py
"""
Тесты для периодических воркеров обслуживания поездок.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from carpool.common.errors import RouteProviderError
from carpool.core.trips.models import PaymentCheckReport
from carpool.worker.base import PeriodicWorker
from carpool.worker.runner import build_workers, run_workers
from carpool.worker.sweepers import PaymentCheckWorker, TripExpiryWorker


class CountingWorker(PeriodicWorker):
    """Воркер, считающий проходы."""

    def __init__(self, interval: float = 0.01, error: Exception | None = None) -> None:
        super().__init__(interval)
        self.runs = 0
        self.error = error

    @property
    def name(self) -> str:
        return "counting_worker"

    async def run_once(self) -> None:
        self.runs += 1
        if self.error is not None:
            raise self.error


@pytest.fixture
def trips() -> MagicMock:
    """Мок сервиса поездок."""
    service = MagicMock()
    service.expire_trips = AsyncMock(return_value=[])
    service.check_pending_payments = AsyncMock(return_value=PaymentCheckReport())
    return service


class TestPeriodicWorker:
    """Тесты базового цикла."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self) -> None:
        """Цикл выполняет проходы до остановки."""
        worker = CountingWorker()

        await worker.start()
        await asyncio.sleep(0.05)
        await worker.stop()

        assert worker.runs >= 1
        assert worker.is_running is False
        assert worker._task is None

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self) -> None:
        """Повторный start не создаёт второй цикл."""
        worker = CountingWorker(interval=10)

        await worker.start()
        task = worker._task
        await worker.start()

        assert worker._task is task
        await worker.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self) -> None:
        """Остановка незапущенного воркера ничего не делает."""
        await CountingWorker().stop()

    @pytest.mark.asyncio
    async def test_domain_error_does_not_stop_loop(self) -> None:
        """Ошибка прохода логируется, цикл продолжается."""
        worker = CountingWorker(error=RouteProviderError("timeout"))

        with patch("carpool.worker.base.log_error", AsyncMock()) as mock_log_error:
            await worker._run_safely()
            await worker._run_safely()

        assert worker.runs == 2
        assert mock_log_error.await_count == 2

    @pytest.mark.asyncio
    async def test_unexpected_error_propagates(self) -> None:
        """Программные ошибки не подавляются."""
        worker = CountingWorker(error=KeyError("bug"))
        with pytest.raises(KeyError):
            await worker._run_safely()


class TestSweepers:
    """Тесты воркеров обслуживания."""

    @pytest.mark.asyncio
    async def test_expiry_worker(self, trips: MagicMock) -> None:
        """Проход отменяет просроченные поездки."""
        trips.expire_trips.return_value = ["t1", "t2"]

        await TripExpiryWorker(trips).run_once()

        trips.expire_trips.assert_awaited_once_with()

    @pytest.mark.asyncio
    async def test_payment_worker(self, trips: MagicMock) -> None:
        """Проход проверяет неоплаченные поездки."""
        trips.check_pending_payments.return_value = PaymentCheckReport(notified=["t1"], reminded=["t2"])

        await PaymentCheckWorker(trips).run_once()

        trips.check_pending_payments.assert_awaited_once_with()

    def test_names_and_default_intervals(self, trips: MagicMock) -> None:
        """Имена и интервалы по умолчанию."""
        assert TripExpiryWorker(trips).name == "TripExpiryWorker"
        assert TripExpiryWorker(trips).interval == 3600
        assert PaymentCheckWorker(trips).interval == 60


class TestRunner:
    """Тесты запускалки воркеров."""

    def test_build_workers_uses_config(self, trips: MagicMock) -> None:
        """Интервалы берутся из секции sweeper."""
        mock_settings = MagicMock()
        mock_settings.sweeper.EXPIRY_INTERVAL = 120
        mock_settings.sweeper.PAYMENT_CHECK_INTERVAL = 15

        with patch("carpool.config.settings", mock_settings):
            workers = build_workers(trips)

        assert [type(w) for w in workers] == [TripExpiryWorker, PaymentCheckWorker]
        assert [w.interval for w in workers] == [120, 15]

    @pytest.mark.asyncio
    async def test_run_workers_until_stop(self) -> None:
        """Воркеры запускаются и останавливаются по событию."""
        workers = [CountingWorker(interval=10), CountingWorker(interval=10)]
        stop_event = asyncio.Event()

        runner = asyncio.create_task(run_workers(workers, stop_event))
        await asyncio.sleep(0.02)
        assert all(w.is_running for w in workers)

        stop_event.set()
        await runner

        assert not any(w.is_running for w in workers)
        assert all(w.runs == 1 for w in workers)
