# carpool/config/loader.py
"""
Загрузчик конфигурации проекта.
Единственный источник истины: config/config.json.
Секретные данные и адреса сервисов переопределяются из переменных окружения.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


SectionT = TypeVar("SectionT", bound=BaseModel)


# =============================================================================
# ОПРЕДЕЛЕНИЕ ПУТЕЙ
# =============================================================================

def get_project_root() -> Path:
    """Возвращает корневую директорию проекта."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Возвращает путь к файлу конфигурации."""
    return get_project_root() / "config" / "config.json"


def load_config_json(path: Path | None = None) -> dict[str, Any]:
    """Загружает config.json и возвращает словарь без ключей-комментариев."""
    config_path = path or get_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Файл конфигурации не найден: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    return {k: v for k, v in data.items() if not k.startswith("_comment_")}


# =============================================================================
# PYDANTIC МОДЕЛИ КОНФИГУРАЦИИ
# =============================================================================

class SystemSettings(BaseModel):
    """Системные настройки."""
    PROJECT_NAME: str = "carpool"
    VERSION: str = "1.0.0"
    DEBUG: bool = True
    ENVIRONMENT: str = "development"


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "DEBUG"
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: str = "logs/carpool.log"
    LOG_FORMAT: str = "colored"
    LOG_MAX_BYTES: int = 10485760


class GoogleMapsSettings(BaseModel):
    """Настройки провайдера маршрутов (Google Directions API)."""
    GOOGLE_MAPS_API_KEY: str = ""
    DIRECTIONS_LANGUAGE: str = "en"
    REQUEST_TIMEOUT: float = 10.0

    @field_validator("GOOGLE_MAPS_API_KEY", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает API ключ из переменных окружения."""
        if not v:
            return os.getenv("GOOGLE_MAPS_API_KEY", "")
        return v


class DomainSettings(BaseModel):
    """Настройки предметной области."""
    TIMEZONE: str = "Africa/Cairo"
    CURRENCY: str = "EGP"


class DatabaseSettings(BaseModel):
    """Настройки PostgreSQL."""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "carpool"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_MIN_POOL_SIZE: int = 5
    DB_MAX_POOL_SIZE: int = 20
    DB_COMMAND_TIMEOUT: int = 60
    DB_RETRY_ATTEMPTS: int = 3
    DB_RETRY_DELAY: float = 1.0

    @field_validator("DB_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("DB_PASSWORD", "")
        return v

    @property
    def dsn(self) -> str:
        """Возвращает DSN для подключения к PostgreSQL."""
        return (
            f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )


class RedisSettings(BaseModel):
    """Настройки Redis."""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""
    REDIS_NAMESPACE: str = "carpool"
    REDIS_MAX_CONNECTIONS: int = 50

    @property
    def url(self) -> str:
        """Возвращает URL для подключения к Redis."""
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"


class RedisTTLSettings(BaseModel):
    """Настройки TTL кэша."""
    ROUTE_TTL: int = 3600


class RabbitMQSettings(BaseModel):
    """Настройки RabbitMQ."""
    RABBITMQ_HOST: str = "localhost"
    RABBITMQ_PORT: int = 5672
    RABBITMQ_USER: str = "guest"
    RABBITMQ_PASSWORD: str = "guest"
    RABBITMQ_VHOST: str = "/"
    RABBITMQ_EXCHANGE: str = "carpool.events"
    RABBITMQ_PREFETCH_COUNT: int = 10

    @property
    def url(self) -> str:
        """Возвращает URL для подключения к RabbitMQ."""
        return (
            f"amqp://{self.RABBITMQ_USER}:{self.RABBITMQ_PASSWORD}"
            f"@{self.RABBITMQ_HOST}:{self.RABBITMQ_PORT}{self.RABBITMQ_VHOST}"
        )


class MatchingSettings(BaseModel):
    """Параметры геометрического подбора попутных поездок."""
    CORRIDOR_MAX_BEARING_DIFF: float = 25.0
    PARALLEL_BEARING_DIFF: float = 20.0
    START_TIME_WINDOW_MINUTES: int = 30
    SHORT_ROUTE_MAX_KM: float = 100.0
    MEDIUM_ROUTE_MAX_KM: float = 200.0
    SHORT_ROUTE_TOLERANCE_KM: float = 40.0
    MEDIUM_ROUTE_TOLERANCE_KM: float = 60.0
    LONG_ROUTE_TOLERANCE_KM: float = 80.0
    DEFAULT_PAGE_SIZE: int = 10


class LifecycleSettings(BaseModel):
    """Временные правила жизненного цикла поездки."""
    CONFLICT_BUFFER_HOURS: float = 2.0
    DEFAULT_COMMITMENT_HOURS: float = 2.0
    DRIVER_CONFLICT_HOURS: float = 2.0
    START_WINDOW_BEFORE_MINUTES: int = 60
    START_WINDOW_AFTER_MINUTES: int = 30
    PASSENGER_LEAVE_FORBIDDEN_HOURS: float = 6.0
    PASSENGER_LEAVE_PENALTY_HOURS: float = 12.0
    PASSENGER_LEAVE_PENALTY: int = 30
    DRIVER_LEAVE_FORBIDDEN_HOURS: float = 6.0
    DRIVER_LEAVE_PENALTY_HOURS: float = 12.0
    DRIVER_LEAVE_PENALTY: int = 30
    PAYMENT_NOTICE_HOURS: float = 8.0
    PAYMENT_GRACE_MINUTES: int = 60


class NotificationSettings(BaseModel):
    """Настройки отправки уведомлений."""
    NOTIFICATION_DELAY_MS: int = 2000


class SweeperSettings(BaseModel):
    """Интервалы периодических проверок (секунды)."""
    EXPIRY_INTERVAL: int = 3600
    PAYMENT_CHECK_INTERVAL: int = 60


# =============================================================================
# ГЛАВНЫЙ КЛАСС НАСТРОЕК
# =============================================================================

# Ключи, которые всегда можно переопределить переменными окружения
ENV_OVERRIDES: tuple[str, ...] = (
    "ENVIRONMENT",
    "LOG_LEVEL",
    "GOOGLE_MAPS_API_KEY",
    "DB_HOST",
    "DB_PORT",
    "DB_NAME",
    "DB_USER",
    "DB_PASSWORD",
    "REDIS_HOST",
    "REDIS_PORT",
    "REDIS_PASSWORD",
    "RABBITMQ_HOST",
    "RABBITMQ_PORT",
    "RABBITMQ_USER",
    "RABBITMQ_PASSWORD",
)


def build_section(section_cls: type[SectionT], data: dict[str, Any]) -> SectionT:
    """
    Собирает секцию настроек из плоского словаря config.json.

    Берутся только ключи, совпадающие с полями секции; переменные окружения
    из ENV_OVERRIDES имеют приоритет над файлом.
    """
    values: dict[str, Any] = {}
    for name in section_cls.model_fields:
        env_value = os.getenv(name) if name in ENV_OVERRIDES else None
        if env_value:
            values[name] = env_value
        elif name in data:
            values[name] = data[name]
    return section_cls(**values)


class Settings(BaseSettings):
    """
    Главный класс настроек приложения.
    Агрегирует все секции конфигурации.
    """
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    system: SystemSettings = Field(default_factory=SystemSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    google_maps: GoogleMapsSettings = Field(default_factory=GoogleMapsSettings)
    domain: DomainSettings = Field(default_factory=DomainSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    redis_ttl: RedisTTLSettings = Field(default_factory=RedisTTLSettings)
    rabbitmq: RabbitMQSettings = Field(default_factory=RabbitMQSettings)
    matching: MatchingSettings = Field(default_factory=MatchingSettings)
    lifecycle: LifecycleSettings = Field(default_factory=LifecycleSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    sweeper: SweeperSettings = Field(default_factory=SweeperSettings)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Settings":
        """Создаёт Settings из плоского словаря конфигурации."""
        return cls(
            system=build_section(SystemSettings, data),
            logging=build_section(LoggingSettings, data),
            google_maps=build_section(GoogleMapsSettings, data),
            domain=build_section(DomainSettings, data),
            database=build_section(DatabaseSettings, data),
            redis=build_section(RedisSettings, data),
            redis_ttl=build_section(RedisTTLSettings, data),
            rabbitmq=build_section(RabbitMQSettings, data),
            matching=build_section(MatchingSettings, data),
            lifecycle=build_section(LifecycleSettings, data),
            notifications=build_section(NotificationSettings, data),
            sweeper=build_section(SweeperSettings, data),
        )

    @classmethod
    def from_config_json(cls, path: Path | None = None) -> "Settings":
        """
        Создаёт объект Settings из config.json.
        Секреты переопределяются из переменных окружения.
        """
        return cls.from_dict(load_config_json(path))


@lru_cache()
def get_settings() -> Settings:
    """
    Возвращает синглтон настроек приложения.
    Использует кэширование для производительности.
    """
    from dotenv import load_dotenv

    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


# Экспорт синглтона для удобного импорта
settings = get_settings()
