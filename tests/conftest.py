# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("REDIS_PASSWORD", "")
os.environ.setdefault("GOOGLE_MAPS_API_KEY", "test_api_key")

from carpool.core.geo.routes import CachedRouteProvider, MemoryRouteCache  # noqa: E402
from carpool.core.trips.service import TripService  # noqa: E402
from carpool.core.trips.state_machine import LifecyclePolicy  # noqa: E402
from fakes import (  # noqa: E402
    NOW,
    FakeClock,
    FakeRoutingProvider,
    InMemorySettingsRepository,
    InMemoryTripRepository,
    RecordingNotifier,
)


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Путь к файлу конфигурации."""
    return project_root / "config" / "config.json"


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Мок конфигурации для тестов."""
    return {
        "_comment_system": "===== SYSTEM =====",
        "PROJECT_NAME": "carpool_test",
        "VERSION": "1.0.0-test",
        "DEBUG": True,
        "ENVIRONMENT": "test",
        "LOG_LEVEL": "DEBUG",
        "LOG_TO_FILE": False,
        "LOG_FORMAT": "colored",
        "GOOGLE_MAPS_API_KEY": "test_api_key",
        "DIRECTIONS_LANGUAGE": "ar",
        "TIMEZONE": "UTC",
        "DB_HOST": "localhost",
        "DB_PORT": 5432,
        "DB_NAME": "carpool_test",
        "DB_USER": "postgres",
        "DB_PASSWORD": "test_password",
        "REDIS_HOST": "localhost",
        "REDIS_PORT": 6379,
        "REDIS_DB": 1,
        "REDIS_NAMESPACE": "carpool_test",
        "ROUTE_TTL": 120,
        "RABBITMQ_HOST": "localhost",
        "RABBITMQ_EXCHANGE": "carpool.test",
        "START_TIME_WINDOW_MINUTES": 45,
        "PASSENGER_LEAVE_PENALTY": 50,
        "NOTIFICATION_DELAY_MS": 0,
        "EXPIRY_INTERVAL": 10,
    }


@pytest.fixture
def temp_config_file(tmp_path: Path, mock_config: dict[str, Any]) -> Path:
    """Создаёт временный файл конфигурации."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(mock_config, ensure_ascii=False, indent=2))
    return config_file


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ (МОКИ)
# =============================================================================

@pytest.fixture
def mock_db() -> AsyncMock:
    """Мок менеджера базы данных."""
    db = AsyncMock()
    db.fetchrow = AsyncMock(return_value=None)
    db.fetch = AsyncMock(return_value=[])
    db.execute = AsyncMock(return_value="UPDATE 1")
    db.fetchval = AsyncMock(return_value=None)
    return db


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Мок клиента Redis."""
    redis = AsyncMock()
    redis.get_json = AsyncMock(return_value=None)
    redis.set_json = AsyncMock(return_value=True)
    return redis


@pytest.fixture
def mock_event_bus() -> AsyncMock:
    """Мок шины событий."""
    event_bus = AsyncMock()
    event_bus.publish = AsyncMock(return_value=True)
    event_bus.is_connected = True
    return event_bus


# =============================================================================
# ФИКСТУРЫ СЕРВИСА ПОЕЗДОК
# =============================================================================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(NOW)


@pytest.fixture
def repo() -> InMemoryTripRepository:
    repository = InMemoryTripRepository()
    for user_id in ("u1", "u2", "u3", "u4"):
        repository.add_user(user_id, balance=100)
    repository.add_user("d1", balance=0)
    repository.add_user("d2", balance=0)
    return repository


@pytest.fixture
def settings_repo() -> InMemorySettingsRepository:
    return InMemorySettingsRepository()


@pytest.fixture
def routing() -> FakeRoutingProvider:
    return FakeRoutingProvider()


@pytest.fixture
def route_provider(routing: FakeRoutingProvider) -> CachedRouteProvider:
    return CachedRouteProvider(routing, MemoryRouteCache(ttl_seconds=3600))


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def trip_service(
    repo: InMemoryTripRepository,
    settings_repo: InMemorySettingsRepository,
    route_provider: CachedRouteProvider,
    notifier: RecordingNotifier,
    mock_event_bus: AsyncMock,
    clock: FakeClock,
) -> TripService:
    """Сервис поездок поверх in-memory хранилища, таймзона UTC."""
    return TripService(
        repository=repo,
        settings_repository=settings_repo,
        routes=route_provider,
        notifier=notifier,
        events=mock_event_bus,
        lifecycle_policy=LifecyclePolicy(),
        timezone_name="UTC",
        clock=clock,
    )
