# src/core/hub/session.py
"""
Сессия одного WebSocket соединения.

CONNECTED → SUBSCRIBED(cell) → SUBSCRIBED(cell') → DISCONNECTED.
Отключение — сигнал отмены: всё, что ещё выполняется для закрытой
сессии, молча завершается и ничего не отправляет.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol

from src.common.logger import log_debug
from src.core.geo.cell import CellId, Coordinate, DEFAULT_CELL_PRECISION, compute_cell
from src.core.hub.registry import SubscriptionRegistry
from src.core.hub.store import ProximityStore
from src.shared.models.messages import ServerMessage
from src.shared.models.vibe import Vibe


class MessageChannel(Protocol):
    """Транспорт, в который сессия пишет сообщения (WebSocket)."""

    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


class SessionState(str, Enum):
    """Состояния сессии."""
    CONNECTED = "connected"
    SUBSCRIBED = "subscribed"
    DISCONNECTED = "disconnected"


class ConnectionSession:
    """
    Сессия соединения.

    Владеет не более чем одной подпиской в реестре и обязана снять её
    при отключении (ровно один раз, на любом пути выхода).
    """

    def __init__(
        self,
        connection_id: str,
        channel: MessageChannel,
        registry: SubscriptionRegistry,
        store: ProximityStore,
        *,
        cell_precision: int = DEFAULT_CELL_PRECISION,
        snapshot_radius_m: float = 1000.0,
        snapshot_limit: int | None = None,
    ) -> None:
        self.connection_id = connection_id
        self.connected_at = datetime.now(timezone.utc)
        self.messages_sent = 0
        # monotonic-время последнего входящего или исходящего сообщения
        self.last_activity = time.monotonic()

        self._channel = channel
        self._registry = registry
        self._store = store
        self._cell_precision = cell_precision
        self._snapshot_radius_m = snapshot_radius_m
        self._snapshot_limit = snapshot_limit

        self._state = SessionState.CONNECTED
        self._cell: CellId | None = None
        # WebSocket не допускает параллельной записи в одно соединение
        self._send_lock = asyncio.Lock()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def cell(self) -> CellId | None:
        """Ячейка текущей подписки."""
        return self._cell

    @property
    def is_closed(self) -> bool:
        return self._state is SessionState.DISCONNECTED

    @property
    def idle_seconds(self) -> float:
        """Секунд без сообщений в любую сторону."""
        return time.monotonic() - self.last_activity

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    async def join(self, coord: Coordinate) -> list[Vibe] | None:
        """
        Подписаться на ячейку координаты и получить начальный снимок.

        Ячейка вычисляется до любых изменений, поэтому InvalidCoordinate
        не трогает ни хранилище, ни реестр. Если хранилище недоступно,
        подписка остаётся прежней.

        Returns:
            Вайбы рядом с точкой или None, если сессия закрылась во время запроса

        Raises:
            InvalidCoordinate: некорректная координата
            StoreUnavailable: хранилище не ответило
        """
        if self.is_closed:
            return None

        cell = compute_cell(coord, self._cell_precision)

        snapshot = await self._store.find_near(
            coord,
            self._snapshot_radius_m,
            limit=self._snapshot_limit,
        )

        if self.is_closed:
            return None

        self._registry.join(self.connection_id, cell)
        self._cell = cell
        self._state = SessionState.SUBSCRIBED
        return snapshot

    async def send(self, message: ServerMessage | dict[str, Any]) -> bool:
        """
        Отправить сообщение клиенту.

        Returns:
            False, если сессия уже закрыта; ошибки транспорта пробрасываются
        """
        if self.is_closed:
            return False

        payload = message.to_wire() if isinstance(message, ServerMessage) else message

        async with self._send_lock:
            if self.is_closed:
                return False
            await self._channel.send_json(payload)

        self.messages_sent += 1
        self.touch()
        return True

    async def close_channel(self, code: int = 1001) -> None:
        """Закрыть транспорт со стороны сервера (остановка хаба)."""
        try:
            await self._channel.close(code=code)
        except Exception as e:
            # Клиент мог уже отключиться сам
            await log_debug(f"Соединение {self.connection_id} уже закрыто: {e!r}")

    def disconnect(self) -> bool:
        """
        Закрыть сессию и снять подписку.

        Синхронный, чтобы отработать и в finally отменённой задачи.

        Returns:
            True при первом вызове, False при повторных
        """
        if self.is_closed:
            return False

        self._state = SessionState.DISCONNECTED
        self._cell = None
        self._registry.leave(self.connection_id)
        return True
