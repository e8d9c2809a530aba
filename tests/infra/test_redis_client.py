# tests/infra/test_redis_client.py
"""
Тесты для клиента Redis.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from carpool.infra.redis_client import RedisClient, get_redis


@pytest.fixture(autouse=True)
def reset_redis_client() -> None:
    """Сбрасывает синглтон перед каждым тестом."""
    RedisClient._instance = None
    yield
    RedisClient._instance = None


@pytest.fixture
def connected_client() -> RedisClient:
    """Клиент с замоканным соединением."""
    client = RedisClient()
    client._client = AsyncMock()
    client._namespace = "test"
    return client


class TestRedisClientBasics:
    """Базовые тесты клиента."""

    def test_singleton(self) -> None:
        """get_redis возвращает один и тот же экземпляр."""
        assert get_redis() is RedisClient()

    def test_client_not_initialized(self) -> None:
        """Обращение к клиенту до connect."""
        with pytest.raises(RuntimeError, match="не инициализирован"):
            _ = RedisClient().client

    def test_make_key(self) -> None:
        """Ключи получают префикс пространства имён."""
        assert RedisClient()._make_key("route:abc") == "carpool:route:abc"


class TestJsonOperations:
    """Тесты JSON операций."""

    @pytest.mark.asyncio
    async def test_set_json_with_ttl(self, connected_client: RedisClient) -> None:
        """JSON сохраняется без экранирования юникода и с TTL."""
        await connected_client.set_json("route:1", {"name": "القاهرة"}, ttl=60)

        connected_client._client.set.assert_awaited_once_with(
            "test:route:1", '{"name": "القاهرة"}', ex=60,
        )

    @pytest.mark.asyncio
    async def test_get_json(self, connected_client: RedisClient) -> None:
        """Значение парсится из JSON."""
        connected_client._client.get.return_value = '{"distance_km": 12.5}'

        assert await connected_client.get_json("route:1") == {"distance_km": 12.5}
        connected_client._client.get.assert_awaited_once_with("test:route:1")

    @pytest.mark.asyncio
    async def test_get_json_missing(self, connected_client: RedisClient) -> None:
        """Отсутствующий ключ."""
        connected_client._client.get.return_value = None
        assert await connected_client.get_json("route:1") is None

    @pytest.mark.asyncio
    async def test_get_json_corrupted(self, connected_client: RedisClient) -> None:
        """Повреждённое значение считается промахом кэша."""
        connected_client._client.get.return_value = "{not json"
        assert await connected_client.get_json("route:1") is None


class TestHealthCheck:
    """Тесты проверки здоровья."""

    @pytest.mark.asyncio
    async def test_healthy(self, connected_client: RedisClient) -> None:
        """Успешный ping."""
        connected_client._client.ping.return_value = True
        assert await connected_client.health_check() is True

    @pytest.mark.asyncio
    async def test_redis_error(self, connected_client: RedisClient) -> None:
        """Ошибка Redis не пробрасывается."""
        connected_client._client.ping.side_effect = RedisConnectionError("refused")
        assert await connected_client.health_check() is False

    @pytest.mark.asyncio
    async def test_not_connected(self) -> None:
        """Без подключения проверка возвращает False."""
        assert await RedisClient().health_check() is False

    @pytest.mark.asyncio
    async def test_disconnect(self, connected_client: RedisClient) -> None:
        """Отключение закрывает клиент и сбрасывает его."""
        inner = connected_client._client

        await connected_client.disconnect()

        inner.aclose.assert_awaited_once()
        assert connected_client._client is None
