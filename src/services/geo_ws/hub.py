# src/services/geo_ws/hub.py
"""
Гео-хаб: управление соединениями и маршрутизация сообщений клиентов.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Awaitable, Callable
from uuid import uuid4

from fastapi import WebSocket

from src.common.constants import EventKind, TypeMsg
from src.common.logger import log_info, log_warning
from src.core.exceptions import HubError, VibeNotFound
from src.core.geo.cell import Coordinate, DEFAULT_CELL_PRECISION
from src.core.hub.dispatcher import DispatchReport, EventDispatcher
from src.core.hub.registry import SubscriptionRegistry
from src.core.hub.session import ConnectionSession
from src.core.hub.store import ProximityStore
from src.shared.models.messages import (
    ErrorMessage,
    JoinRequest,
    PingRequest,
    PongMessage,
    PublishRequest,
    SnapshotMessage,
    UpdateRequest,
    parse_client_message,
)
from src.shared.models.vibe import GeoPoint, Vibe

if TYPE_CHECKING:
    from src.config.loader import Settings


EventPublisher = Callable[[Vibe, EventKind], Awaitable[Any]]


class GeoHub:
    """
    Хаб WebSocket соединений.

    Поддерживает:
    - Подключение/отключение клиентов (сессии)
    - Подписку на ячейку по координатам с начальным снимком
    - Создание и обновление вайбов с рассылкой в ячейку
    - Ошибки только отправителю запроса
    """

    def __init__(
        self,
        store: ProximityStore,
        *,
        registry: SubscriptionRegistry | None = None,
        cell_precision: int = DEFAULT_CELL_PRECISION,
        snapshot_radius_m: float = 1000.0,
        snapshot_limit: int | None = None,
        delivery_timeout: float = 5.0,
    ) -> None:
        self.store = store
        self.registry = registry or SubscriptionRegistry()

        # connection_id -> ConnectionSession
        self._sessions: dict[str, ConnectionSession] = {}

        self.dispatcher = EventDispatcher(
            self.registry,
            self._sessions,
            cell_precision=cell_precision,
            delivery_timeout=delivery_timeout,
        )

        self._cell_precision = cell_precision
        self._snapshot_radius_m = snapshot_radius_m
        self._snapshot_limit = snapshot_limit

        # Если задан, события уходят в Redis, а не сразу в dispatcher
        self._event_publisher: EventPublisher | None = None
        self._dispatch_tasks: set[asyncio.Task] = set()

        # Для статистики
        self._total_connections = 0
        self._total_errors = 0

    @classmethod
    def from_settings(
        cls,
        settings: "Settings",
        store: ProximityStore,
    ) -> "GeoHub":
        """Создаёт хаб с параметрами из конфигурации."""
        return cls(
            store,
            registry=SubscriptionRegistry(stripes=settings.hub.REGISTRY_LOCK_STRIPES),
            cell_precision=settings.geo.CELL_PRECISION,
            snapshot_radius_m=settings.geo.SNAPSHOT_RADIUS_METERS,
            snapshot_limit=settings.geo.SNAPSHOT_LIMIT,
            delivery_timeout=settings.hub.DELIVERY_TIMEOUT,
        )

    def set_event_publisher(self, publisher: EventPublisher | None) -> None:
        """Направить события через внешний канал (Redis relay)."""
        self._event_publisher = publisher

    @property
    def active_connections(self) -> int:
        """Количество активных соединений."""
        return len(self._sessions)

    def get_session(self, connection_id: str) -> ConnectionSession | None:
        return self._sessions.get(connection_id)

    # =========================================================================
    # ЖИЗНЕННЫЙ ЦИКЛ СОЕДИНЕНИЯ
    # =========================================================================

    async def connect(self, websocket: WebSocket) -> ConnectionSession:
        """Принять соединение и создать сессию."""
        await websocket.accept()

        session = ConnectionSession(
            uuid4().hex,
            websocket,
            self.registry,
            self.store,
            cell_precision=self._cell_precision,
            snapshot_radius_m=self._snapshot_radius_m,
            snapshot_limit=self._snapshot_limit,
        )
        self._sessions[session.connection_id] = session
        self._total_connections += 1

        await log_info(
            f"Подключение {session.connection_id}",
            type_msg=TypeMsg.DEBUG,
            extra={"active_connections": self.active_connections},
        )
        return session

    async def disconnect(self, session: ConnectionSession) -> None:
        """Отключить клиента. Повторные вызовы ничего не делают."""
        released = session.disconnect()
        self._sessions.pop(session.connection_id, None)

        if released:
            await log_info(
                f"Отключение {session.connection_id}",
                type_msg=TypeMsg.DEBUG,
                extra={"active_connections": self.active_connections},
            )

    async def close(self) -> None:
        """Остановка хаба: закрыть все сессии и дождаться рассылок."""
        for session in list(self._sessions.values()):
            await session.close_channel()
            await self.disconnect(session)

        await self.wait_dispatches()

        self.registry.clear()

    # =========================================================================
    # СООБЩЕНИЯ КЛИЕНТА
    # =========================================================================

    async def handle_message(self, session: ConnectionSession, raw: str | bytes | dict[str, Any]) -> None:
        """
        Обработать сообщение клиента.

        Ошибка запроса отправляется только этому клиенту как
        {"kind": "error"} и не влияет на остальные соединения.
        """
        try:
            request = parse_client_message(raw)

            if isinstance(request, JoinRequest):
                await self.join(session, request.latitude, request.longitude)
            elif isinstance(request, PublishRequest):
                await self._handle_publish(request)
            elif isinstance(request, UpdateRequest):
                await self._handle_update(request)
            elif isinstance(request, PingRequest):
                await session.send(PongMessage())

        except HubError as e:
            self._total_errors += 1
            await log_warning(
                f"Запрос {session.connection_id} отклонён: {e.message}",
                extra={"error_code": e.code},
            )
            await session.send(ErrorMessage(message=e.message, code=e.code))

    async def join(self, session: ConnectionSession, latitude: Any, longitude: Any) -> list[Vibe] | None:
        """
        Подписать сессию на ячейку и отправить снимок.

        Raises:
            InvalidCoordinate, StoreUnavailable
        """
        coord = Coordinate.from_values(latitude, longitude)
        snapshot = await session.join(coord)
        if snapshot is None:
            return None

        await session.send(SnapshotMessage(entities=snapshot))
        return snapshot

    async def _handle_publish(self, request: PublishRequest) -> Vibe:
        coord = Coordinate.from_values(request.location.lat, request.location.lon)

        vibe = Vibe(
            type=request.type,
            content=request.content,
            location=GeoPoint.from_coordinate(coord),
            created_by=request.created_by,
            ar_data=request.ar_data,
        )
        stored = await self.store.upsert(vibe)

        await self.publish_event(stored, EventKind.CREATED)
        return stored

    async def _handle_update(self, request: UpdateRequest) -> Vibe:
        changes: dict[str, Any] = {}
        if request.location is not None:
            coord = Coordinate.from_values(request.location.lat, request.location.lon)
            changes["location"] = GeoPoint.from_coordinate(coord)
        if request.type is not None:
            changes["type"] = request.type
        if request.content is not None:
            changes["content"] = request.content
        if request.ar_data is not None:
            changes["ar_data"] = request.ar_data

        current = await self.store.get(request.id)
        if current is None:
            raise VibeNotFound(f"Вайб {request.id} не найден")

        stored = await self.store.upsert(current.model_copy(update=changes))

        # Рассылка в ячейку новой точки, старая ячейка не уведомляется
        await self.publish_event(stored, EventKind.UPDATED)
        return stored

    # =========================================================================
    # РАССЫЛКА
    # =========================================================================

    async def publish_event(self, vibe: Vibe, kind: EventKind) -> asyncio.Task[DispatchReport] | None:
        """
        Разослать событие.

        Через Redis relay, если он подключён (тогда рассылают все инстансы,
        включая этот), иначе — сразу локальным подписчикам.
        Локальная рассылка только запускается, её задача возвращается без ожидания.
        """
        if self._event_publisher is not None:
            await self._event_publisher(vibe, kind)
            return None
        return self.schedule_local(vibe, kind)

    def schedule_local(self, vibe: Vibe, kind: EventKind) -> asyncio.Task[DispatchReport]:
        """
        Запустить рассылку подписчикам этого инстанса и сразу вернуть задачу.

        Задача не привязана к обработчику отправителя: его отключение
        не прерывает доставку остальным, а медленный подписчик одной ячейки
        не задерживает следующее сообщение отправителя или relay.
        """
        task = asyncio.create_task(self.dispatcher.dispatch(vibe, kind))
        self._dispatch_tasks.add(task)
        task.add_done_callback(self._dispatch_tasks.discard)
        return task

    async def wait_dispatches(self) -> None:
        """Дождаться всех запущенных рассылок."""
        while self._dispatch_tasks:
            await asyncio.gather(*self._dispatch_tasks, return_exceptions=True)

    # =========================================================================
    # СТАТИСТИКА
    # =========================================================================

    def get_stats(self) -> dict[str, Any]:
        """Получить статистику."""
        registry_stats = self.registry.get_stats()
        return {
            "active_connections": self.active_connections,
            "total_connections_ever": self._total_connections,
            "total_errors": self._total_errors,
            "subscribed_cells": registry_stats["cells"],
            "subscribers": registry_stats["subscribers"],
            **self.dispatcher.get_stats(),
        }
