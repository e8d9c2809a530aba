# carpool/core/notifications/service.py
"""
Сервис уведомлений.

Доставка «выстрелил и забыл»: не более одного раза, без гарантий.
Ядро никогда не ждёт результата; сбои только логируются и не откатывают
изменение состояния поездки.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

from carpool.common.constants import TypeMsg
from carpool.common.logger import log_error, log_info
from carpool.infra.event_bus import EventBus
from carpool.shared.events import NotificationRequested


class Notifier(Protocol):
    """Интерфейс уведомлений, который использует ядро."""

    def notify(
        self,
        user_id: str,
        title: str,
        body: str,
        delay_ms: int | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        ...


class NotificationService:
    """
    Публикует запросы на уведомления в шину событий.
    Фактическая отправка происходит во внешнем потребителе.
    """

    def __init__(self, event_bus: EventBus, default_delay_ms: int = 2000) -> None:
        """
        Args:
            event_bus: Шина событий
            default_delay_ms: Задержка перед отправкой по умолчанию
        """
        self._event_bus = event_bus
        self._default_delay_ms = default_delay_ms
        self._pending: set[asyncio.Task[None]] = set()

    def notify(
        self,
        user_id: str,
        title: str,
        body: str,
        delay_ms: int | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        """
        Ставит уведомление в очередь и сразу возвращает управление.

        Args:
            user_id: Получатель
            title: Заголовок
            body: Текст
            delay_ms: Задержка перед отправкой (по умолчанию из конструктора)
            data: Дополнительные данные для клиента
        """
        delay = self._default_delay_ms if delay_ms is None else delay_ms
        event = NotificationRequested(recipient_id=user_id, title=title, body=body, data=data or {})

        task = asyncio.create_task(self._deliver(event, delay))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, event: NotificationRequested, delay_ms: int) -> None:
        try:
            if delay_ms > 0:
                await asyncio.sleep(delay_ms / 1000)
            published = await self._event_bus.publish(event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await log_error(f"Ошибка отправки уведомления user={event.recipient_id}: {e}", exc_info=True)
            return

        if published is False:
            await log_error(f"Уведомление не доставлено в шину: user={event.recipient_id}, title={event.title}")
            return

        await log_info(
            f"Уведомление поставлено в очередь: user={event.recipient_id}, title={event.title}",
            type_msg=TypeMsg.DEBUG,
        )

    @property
    def pending(self) -> int:
        """Количество ещё не отправленных уведомлений."""
        return len(self._pending)

    async def drain(self) -> None:
        """Дожидается отправки всех поставленных уведомлений (остановка, тесты)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
