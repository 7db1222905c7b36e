# src/services/geo_ws/redis_relay.py
"""
Рассылка событий между инстансами хаба через Redis Pub/Sub.

Инстанс, принявший вайб, публикует событие в канал ячейки
{namespace}:vibes:cell:{cell_key}. Каждый инстанс (включая отправителя)
подписан на паттерн {namespace}:vibes:cell:* и рассылает событие
своим локальным подписчикам.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

from pydantic import TypeAdapter, ValidationError
from redis.exceptions import RedisError

from src.common.constants import EventKind
from src.common.logger import log_error, log_info, log_warning
from src.core.geo.cell import DEFAULT_CELL_PRECISION, compute_cell
from src.infra.redis_client import RedisClient
from src.shared.models.messages import AnyServerMessage, CreatedMessage, UpdatedMessage, event_message
from src.shared.models.vibe import Vibe


# Только запускает локальную рассылку и не ждёт доставку
EventHandler = Callable[[Vibe, EventKind], Any]

_server_message_adapter: TypeAdapter[AnyServerMessage] = TypeAdapter(AnyServerMessage)


class RedisEventRelay:
    """
    Подписчик и публикатор событий вайбов в Redis Pub/Sub.
    """

    CHANNEL_PREFIX = "vibes:cell:"

    def __init__(
        self,
        redis: RedisClient,
        handler: EventHandler,
        cell_precision: int = DEFAULT_CELL_PRECISION,
    ) -> None:
        """
        Args:
            redis: Клиент Redis
            handler: Запуск локальной рассылки (vibe, kind), вызывается без await
            cell_precision: Точность ячеек для имени канала
        """
        self._redis = redis
        self._handler = handler
        self._cell_precision = cell_precision
        self._pubsub = None
        self._task: asyncio.Task | None = None
        self._running = False

        self._total_published = 0
        self._total_received = 0

    @property
    def pattern(self) -> str:
        return self._redis.make_key(f"{self.CHANNEL_PREFIX}*")

    def channel_for(self, vibe: Vibe) -> str:
        """Канал ячейки вайба (без namespace)."""
        cell = compute_cell(vibe.coordinate, self._cell_precision)
        return f"{self.CHANNEL_PREFIX}{cell.key}"

    async def start(self) -> None:
        """Подписаться и запустить чтение сообщений."""
        if self._running:
            return

        self._pubsub = self._redis.pubsub()
        await self._pubsub.psubscribe(self.pattern)
        self._running = True
        self._task = asyncio.create_task(self._listen())

        await log_info(f"Redis relay подписан на {self.pattern}")

    async def stop(self) -> None:
        """Остановить чтение и отписаться."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._pubsub:
            await self._pubsub.punsubscribe()
            await self._pubsub.aclose()
            self._pubsub = None

    async def publish(self, vibe: Vibe, kind: EventKind) -> bool:
        """
        Опубликовать событие для всех инстансов.

        Ошибка Redis логируется и не возвращается отправителю:
        рассылка best-effort.
        """
        message = event_message(kind, vibe)
        try:
            await self._redis.publish(self.channel_for(vibe), message.model_dump_json(by_alias=True))
        except RedisError as e:
            await log_error(f"Не удалось опубликовать событие вайба {vibe.id}: {e}")
            return False

        self._total_published += 1
        return True

    async def _listen(self) -> None:
        """Слушать сообщения из Redis."""
        while self._running:
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=1.0,
                )
                if message is None:
                    continue

                await self._process_message(message)

            except asyncio.CancelledError:
                break
            except Exception as e:
                # Логируем ошибку, но продолжаем работу
                await log_error(f"Ошибка Redis relay: {e!r}")
                await asyncio.sleep(1)

    async def _process_message(self, message: dict[str, Any]) -> None:
        """Разобрать событие и передать в локальную рассылку."""
        if message.get("type") not in ("message", "pmessage"):
            return

        data = message.get("data")
        if isinstance(data, bytes):
            data = data.decode("utf-8")

        try:
            event = _server_message_adapter.validate_json(data)
        except (ValidationError, TypeError) as e:
            await log_warning(f"Некорректное событие в {message.get('channel')}: {e}")
            return

        if isinstance(event, CreatedMessage):
            kind = EventKind.CREATED
        elif isinstance(event, UpdatedMessage):
            kind = EventKind.UPDATED
        else:
            await log_warning(f"Неожиданный тип события в relay: {event.kind}")
            return

        self._total_received += 1
        self._handler(event.entity, kind)

    def get_stats(self) -> dict[str, int]:
        return {
            "relay_published": self._total_published,
            "relay_received": self._total_received,
        }
