#!/usr/bin/env python3
# main.py
"""
Главная точка входа приложения Carpool.
Запускает воркеры обслуживания поездок или разовые операции.
"""

from __future__ import annotations

import asyncio
import signal
import sys

from carpool.common.constants import TypeMsg
from carpool.common.logger import log_error, log_info, setup_logging
from carpool.infra.database import close_db, get_db, init_db
from carpool.infra.event_bus import close_event_bus, get_event_bus, init_event_bus
from carpool.infra.redis_client import close_redis, get_redis, init_redis

MODES = ("worker", "expire", "payments", "health")

# Глобальный флаг для graceful shutdown
_shutdown_event: asyncio.Event | None = None


def setup_signal_handlers() -> asyncio.Event:
    """Настраивает обработчики SIGINT/SIGTERM и возвращает событие остановки."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    def signal_handler(sig: int) -> None:
        if _shutdown_event and not _shutdown_event.is_set():
            print(f"\nПолучен сигнал остановки (sig={sig}), завершаем работу...")
            _shutdown_event.set()

    try:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))
    except NotImplementedError:
        # Windows не поддерживает add_signal_handler
        signal.signal(signal.SIGINT, lambda s, f: signal_handler(s))
        signal.signal(signal.SIGTERM, lambda s, f: signal_handler(s))
    return _shutdown_event


async def init_infrastructure() -> None:
    """Инициализирует все подключения к инфраструктуре."""
    await log_info("Инициализация инфраструктуры...", type_msg=TypeMsg.INFO)

    await init_db()
    await log_info("PostgreSQL подключён", type_msg=TypeMsg.DEBUG)

    await init_redis()
    await log_info("Redis подключён", type_msg=TypeMsg.DEBUG)

    await init_event_bus()
    await log_info("RabbitMQ подключён", type_msg=TypeMsg.DEBUG)

    await log_info("Инфраструктура инициализирована", type_msg=TypeMsg.INFO)


async def close_infrastructure() -> None:
    """Закрывает все подключения."""
    from carpool.dependencies import close_services

    await log_info("Закрытие подключений...", type_msg=TypeMsg.INFO)

    await close_services()
    await close_event_bus()
    await close_redis()
    await close_db()

    await log_info("Подключения закрыты", type_msg=TypeMsg.INFO)


async def run_worker(stop_event: asyncio.Event) -> None:
    """Запускает периодические воркеры до сигнала остановки."""
    from carpool.dependencies import get_trip_service
    from carpool.worker.runner import build_workers, run_workers

    await run_workers(build_workers(get_trip_service()), stop_event)


async def run_expire() -> None:
    """Разовая отмена просроченных поездок."""
    from carpool.dependencies import get_trip_service

    cancelled = await get_trip_service().expire_trips()
    await log_info(f"Отменено просроченных поездок: {len(cancelled)}", type_msg=TypeMsg.INFO)


async def run_payments() -> None:
    """Разовая проверка неоплаченных поездок."""
    from carpool.dependencies import get_trip_service

    report = await get_trip_service().check_pending_payments()
    await log_info(
        f"Проверка оплаты: оплачено={len(report.funded)}, уведомлено={len(report.notified)}, "
        f"напоминаний={len(report.reminded)}, отменено={len(report.cancelled)}",
        type_msg=TypeMsg.INFO,
    )


async def run_health() -> bool:
    """Проверяет доступность PostgreSQL, Redis и RabbitMQ."""
    db_ok = await get_db().health_check()
    redis_ok = await get_redis().health_check()
    bus_ok = get_event_bus().is_connected

    await log_info(f"Health: postgres={db_ok}, redis={redis_ok}, rabbitmq={bus_ok}", type_msg=TypeMsg.INFO)
    return db_ok and redis_ok and bus_ok


async def main(mode: str) -> int:
    """
    Главная функция запуска.

    Args:
        mode: Режим запуска (worker, expire, payments, health)

    Returns:
        Код завершения процесса
    """
    from carpool.config import settings

    setup_logging()
    stop_event = setup_signal_handlers()

    await log_info(
        f"Carpool v{settings.system.VERSION} — запуск в режиме '{mode}'",
        type_msg=TypeMsg.INFO,
    )

    exit_code = 0
    try:
        await init_infrastructure()

        if mode == "worker":
            await run_worker(stop_event)
        elif mode == "expire":
            await run_expire()
        elif mode == "payments":
            await run_payments()
        elif mode == "health":
            exit_code = 0 if await run_health() else 1
    except asyncio.CancelledError:
        await log_info("Задача отменена, выполняется graceful shutdown", type_msg=TypeMsg.INFO)
    except Exception as e:
        await log_error(f"Критическая ошибка: {e}", exc_info=True)
        raise
    finally:
        await log_info("Завершение работы, закрытие подключений...", type_msg=TypeMsg.INFO)
        await close_infrastructure()
        await log_info("Приложение остановлено", type_msg=TypeMsg.INFO)
    return exit_code


def print_usage() -> None:
    """Выводит справку по использованию."""
    print("""
Carpool — подбор совместных поездок и расчёт стоимости

Использование:
    python main.py [mode]

Режимы:
    worker      — Периодические воркеры: истечение поездок и контроль оплаты (по умолчанию)
    expire      — Разовая отмена просроченных поездок
    payments    — Разовая проверка неоплаченных поездок
    health      — Проверка PostgreSQL, Redis и RabbitMQ
    """)


if __name__ == "__main__":
    mode = "worker"

    if len(sys.argv) > 1:
        arg = sys.argv[1].lower()
        if arg in ("--help", "-h"):
            print_usage()
            sys.exit(0)
        if arg not in MODES:
            print(f"Неизвестный режим: {arg}")
            print_usage()
            sys.exit(2)
        mode = arg

    try:
        sys.exit(asyncio.run(main(mode)))
    except KeyboardInterrupt:
        pass
