# tests/common/test_logger.py
"""
Тесты для модуля логирования.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

import carpool.common.logger as logger_module
from carpool.common.constants import TypeMsg
from carpool.common.logger import (
    ColoredFormatter,
    JsonFormatter,
    TimestampedRotatingFileHandler,
    _get_caller_info,
    get_logger,
    log_debug,
    log_error,
    log_info,
    log_warning,
    setup_logging,
)


def make_record(level: int = logging.INFO, msg: str = "Test message", exc_info: Any = None) -> logging.LogRecord:
    record = logging.LogRecord(
        name="test_logger",
        level=level,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )
    record.module = "test_module"
    record.funcName = "test_function"
    return record


TEST_LOGGERS = ("test_logger", "test_json_logger", "test_file_logger")


def drop_test_handlers() -> None:
    for name in TEST_LOGGERS:
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()


@pytest.fixture(autouse=True)
def isolated_logging(monkeypatch: pytest.MonkeyPatch):
    """Свежее состояние модуля логирования на каждый тест."""
    monkeypatch.setattr(logger_module, "_loggers", {})
    monkeypatch.setattr(logger_module, "_FILE_HANDLER", None)
    monkeypatch.setattr(logger_module, "_ERROR_HANDLER", None)
    monkeypatch.setattr(logger_module, "_LOGGING_INITIALIZED", False)
    drop_test_handlers()
    yield
    drop_test_handlers()


def console_settings(**overrides: Any) -> dict[str, Any]:
    conf = {
        "level": "DEBUG",
        "format": "colored",
        "to_file": False,
        "file_path": "logs/carpool.log",
        "max_bytes": 1024,
    }
    conf.update(overrides)
    return conf


class TestJsonFormatter:
    """Тесты для JsonFormatter."""

    def test_format_basic_record(self) -> None:
        """Базовые поля записи."""
        data = json.loads(JsonFormatter().format(make_record()))

        assert data["level"] == "INFO"
        assert data["message"] == "Test message"
        assert data["module"] == "test_module"
        assert data["function"] == "test_function"
        assert data["line"] == 10
        assert data["timestamp"].endswith("Z")

    def test_format_with_extra_data(self) -> None:
        """Дополнительные данные попадают в поле extra без экранирования юникода."""
        record = make_record(logging.WARNING)
        record.extra_data = {"trip_id": "t1", "city": "القاهرة"}

        result = JsonFormatter().format(record)

        assert json.loads(result)["extra"] == {"trip_id": "t1", "city": "القاهرة"}
        assert "القاهرة" in result

    def test_format_with_exception(self) -> None:
        """Трейсбек исключения."""
        try:
            raise ValueError("Test exception")
        except ValueError:
            exc_info = sys.exc_info()

        data = json.loads(JsonFormatter().format(make_record(logging.ERROR, exc_info=exc_info)))

        assert "ValueError" in data["exception"]
        assert "Test exception" in data["exception"]


class TestColoredFormatter:
    """Тесты для ColoredFormatter."""

    def test_format_basic_record(self) -> None:
        """Уровень, сообщение и ANSI код."""
        result = ColoredFormatter().format(make_record())

        assert "[INFO]" in result
        assert "Test message" in result
        assert "\033[32m" in result

    def test_format_with_caller_info(self) -> None:
        """Сведения о вызывающем коде."""
        record = make_record(logging.DEBUG)
        record.extra_data = {
            "caller_function": "request_trip",
            "caller_module": "carpool.core.trips.service",
            "caller_file": "service.py",
            "caller_line": 42,
        }

        result = ColoredFormatter().format(record)

        assert "carpool.core.trips.service.request_trip()" in result
        assert "service.py:42" in result


class TestGetLogger:
    """Тесты для get_logger."""

    def test_creates_console_logger(self) -> None:
        """Новый логгер получает консольный хендлер и не распространяет записи."""
        with patch("carpool.common.logger._read_logging_settings", return_value=console_settings()):
            logger = get_logger("test_logger")

        assert logger.name == "test_logger"
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, ColoredFormatter)
        assert logger.propagate is False

    def test_returns_cached_logger(self) -> None:
        """Повторный вызов возвращает тот же логгер без новых хендлеров."""
        with patch("carpool.common.logger._read_logging_settings", return_value=console_settings()):
            first = get_logger("test_logger")
            second = get_logger("test_logger")

        assert first is second
        assert len(first.handlers) == 1

    def test_level_and_json_format(self) -> None:
        """Уровень и формат берутся из настроек."""
        conf = console_settings(level="WARNING", format="json")
        with patch("carpool.common.logger._read_logging_settings", return_value=conf):
            logger = get_logger("test_json_logger")

        assert logger.level == logging.WARNING
        assert isinstance(logger.handlers[0].formatter, JsonFormatter)

    def test_file_handlers(self, tmp_path: Path) -> None:
        """При записи в файл добавляются общий и отдельный хендлер ошибок."""
        conf = console_settings(to_file=True, file_path=str(tmp_path / "carpool.log"))
        with patch("carpool.common.logger._read_logging_settings", return_value=conf):
            logger = get_logger("test_file_logger")

        file_handlers = [h for h in logger.handlers if isinstance(h, TimestampedRotatingFileHandler)]
        assert len(file_handlers) == 2
        assert file_handlers[1].level == logging.ERROR
        assert (tmp_path / "carpool.log").exists()
        assert (tmp_path / "error.log").exists()

    def test_settings_from_config(self) -> None:
        """Без подмены настройки читаются из config.json проекта."""
        logger = get_logger("test_logger")
        assert logger.level in (logging.DEBUG, logging.INFO, logging.WARNING)


class TestRotatingFileHandler:
    """Тесты ротации файла лога."""

    def test_rollover_archives_file(self, tmp_path: Path) -> None:
        """При переполнении файл переименовывается с датой."""
        handler = TimestampedRotatingFileHandler(log_dir=str(tmp_path), max_bytes=10, logger_name="trips")
        handler.setFormatter(logging.Formatter("%(message)s"))

        handler.emit(make_record(msg="first line"))
        handler.emit(make_record(msg="second line"))
        handler.close()

        archived = [p for p in tmp_path.iterdir() if p.name.startswith("trips_")]
        assert archived
        assert (tmp_path / "trips.log").exists()


class TestSetupLogging:
    """Тесты для setup_logging."""

    def test_third_party_levels(self) -> None:
        """Шумные библиотеки переводятся на WARNING."""
        setup_logging()

        assert logging.getLogger("asyncpg").level == logging.WARNING
        assert logging.getLogger("aio_pika").level == logging.WARNING
        assert logging.getLogger("httpx").level == logging.WARNING


class TestGetCallerInfo:
    """Тесты для _get_caller_info."""

    def test_returns_dict(self) -> None:
        """Результат всегда словарь."""
        assert isinstance(_get_caller_info(), dict)


class TestLogFunctions:
    """Тесты для асинхронных функций логирования."""

    @pytest.mark.asyncio
    async def test_log_info_basic(self) -> None:
        """Базовое логирование INFO."""
        with patch.object(logging.Logger, "info") as mock_info:
            await log_info("Test message")

        mock_info.assert_called_once()
        assert "Test message" in mock_info.call_args[0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("type_msg, method", [
        (TypeMsg.DEBUG, "debug"),
        (TypeMsg.WARNING, "warning"),
        (TypeMsg.ERROR, "error"),
        (TypeMsg.CRITICAL, "critical"),
    ])
    async def test_log_info_levels(self, type_msg: TypeMsg, method: str) -> None:
        """Уровень выбирается по type_msg."""
        with patch.object(logging.Logger, method) as mock_method:
            await log_info("Message", type_msg=type_msg)

        mock_method.assert_called_once()

    @pytest.mark.asyncio
    async def test_log_info_with_extra(self) -> None:
        """Дополнительные данные передаются в extra_data."""
        with patch.object(logging.Logger, "info") as mock_info:
            await log_info("Trip created", extra={"trip_id": "t1"})

        extra_data = mock_info.call_args[1]["extra"]["extra_data"]
        assert extra_data["trip_id"] == "t1"

    @pytest.mark.asyncio
    async def test_log_debug(self) -> None:
        """Функция log_debug."""
        with patch.object(logging.Logger, "debug") as mock_debug:
            await log_debug("Debug message")

        mock_debug.assert_called_once()

    @pytest.mark.asyncio
    async def test_log_warning(self) -> None:
        """Функция log_warning."""
        with patch.object(logging.Logger, "warning") as mock_warning:
            await log_warning("Warning message")

        mock_warning.assert_called_once()

    @pytest.mark.asyncio
    async def test_log_error_with_exc_info(self) -> None:
        """Логирование ошибки с трейсбеком."""
        with patch.object(logging.Logger, "error") as mock_error:
            await log_error("Error message", exc_info=True)

        mock_error.assert_called_once()
        assert mock_error.call_args[1].get("exc_info") is True

    @pytest.mark.asyncio
    async def test_custom_logger_name(self) -> None:
        """Логирование в логгер с пользовательским именем."""
        with patch("carpool.common.logger.get_logger") as mock_get_logger:
            mock_logger = MagicMock()
            mock_get_logger.return_value = mock_logger

            await log_info("Test message", logger_name="carpool.sweeper")

        mock_get_logger.assert_called_once_with("carpool.sweeper")
        mock_logger.info.assert_called_once()
