# src/core/hub/dispatcher.py
"""
Рассылка событий вайбов подписчикам ячейки.

Доставка best-effort, не более одного раза, без очереди: кто не подписан
на ячейку в момент рассылки, событие не получит.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from src.common.constants import EventKind
from src.common.logger import log_debug, log_warning
from src.core.exceptions import DeliveryFailure
from src.core.geo.cell import CellId, DEFAULT_CELL_PRECISION, compute_cell
from src.core.hub.registry import SubscriptionRegistry
from src.core.hub.session import ConnectionSession
from src.shared.models.messages import event_message
from src.shared.models.vibe import Vibe


class DeliveryStatus(str, Enum):
    """Результат доставки одному подписчику."""
    DELIVERED = "delivered"
    FAILED = "failed"
    SKIPPED = "skipped"  # сессия уже закрыта


@dataclass
class DispatchReport:
    """Итог одной рассылки."""
    cell: CellId
    kind: EventKind
    delivered: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def recipients(self) -> int:
        return self.delivered + self.failed + self.skipped


class EventDispatcher:
    """
    Рассылает created/updated событие всем текущим подписчикам ячейки вайба.

    Каждая доставка идёт отдельной корутиной со своим таймаутом; ошибка или
    зависание одного подписчика не задерживает остальных и не возвращается
    отправителю.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        sessions: Mapping[str, ConnectionSession],
        *,
        cell_precision: int = DEFAULT_CELL_PRECISION,
        delivery_timeout: float = 5.0,
    ) -> None:
        self._registry = registry
        self._sessions = sessions
        self._cell_precision = cell_precision
        self._delivery_timeout = delivery_timeout

        self._total_dispatches = 0
        self._total_delivered = 0
        self._total_failed = 0

    async def dispatch(self, vibe: Vibe, kind: EventKind) -> DispatchReport:
        """
        Разослать событие подписчикам ячейки вайба.

        Raises:
            InvalidCoordinate: у вайба некорректная координата
        """
        cell = compute_cell(vibe.coordinate, self._cell_precision)
        subscribers = self._registry.subscribers_of(cell)
        report = DispatchReport(cell=cell, kind=kind)

        self._total_dispatches += 1
        if not subscribers:
            return report

        # Сериализуем один раз на всех подписчиков
        payload = event_message(kind, vibe).to_wire()

        results = await asyncio.gather(
            *(self._deliver(connection_id, payload) for connection_id in subscribers)
        )

        for status in results:
            if status is DeliveryStatus.DELIVERED:
                report.delivered += 1
            elif status is DeliveryStatus.FAILED:
                report.failed += 1
            else:
                report.skipped += 1

        self._total_delivered += report.delivered
        self._total_failed += report.failed

        await log_debug(
            f"Событие {kind.value} вайба {vibe.id} в ячейке {cell.key}: "
            f"доставлено {report.delivered}, ошибок {report.failed}, пропущено {report.skipped}",
        )
        return report

    async def _deliver(self, connection_id: str, payload: dict[str, Any]) -> DeliveryStatus:
        """Доставка одному подписчику. Не бросает ничего, кроме отмены."""
        session = self._sessions.get(connection_id)
        if session is None or session.is_closed:
            return DeliveryStatus.SKIPPED

        try:
            sent = await asyncio.wait_for(session.send(payload), timeout=self._delivery_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            reason = "таймаут" if isinstance(e, asyncio.TimeoutError) else repr(e)
            failure = DeliveryFailure(connection_id, reason)
            await log_warning(
                failure.message,
                extra={"connection_id": connection_id, "error_code": failure.code},
            )
            return DeliveryStatus.FAILED

        return DeliveryStatus.DELIVERED if sent else DeliveryStatus.SKIPPED

    def get_stats(self) -> dict[str, int]:
        """Счётчики рассылок."""
        return {
            "total_dispatches": self._total_dispatches,
            "total_delivered": self._total_delivered,
            "total_failed": self._total_failed,
        }
