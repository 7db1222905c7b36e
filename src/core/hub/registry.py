# src/core/hub/registry.py
"""
Реестр подписок: ячейка ↔ соединения.

Прямой индекс (ячейка → соединения) и обратный (соединение → подписка)
меняются только через join/leave и всегда согласованы: соединение
находится ровно в той ячейке, которую называет обратный индекс.

Синхронизация через lock striping: ячейки и соединения хешируются на
фиксированное число полос, у каждой полосы свой замок и свой кусок
индекса. Операции над разными ячейками не конкурируют за один замок.
Порядок захвата: замок соединения, затем замки ячеек по возрастанию
номера полосы.
"""

from __future__ import annotations

import threading
from contextlib import ExitStack
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from src.core.geo.cell import CellId


@dataclass(frozen=True)
class Subscription:
    """Подписка соединения на ячейку."""
    connection_id: str
    cell: CellId
    joined_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class SubscriptionRegistry:
    """
    Двунаправленный индекс подписок.

    Соединение подписано не более чем на одну ячейку: join в новую ячейку
    атомарно снимает предыдущую подписку.
    """

    def __init__(self, stripes: int = 64) -> None:
        if stripes < 1:
            raise ValueError("stripes должно быть >= 1")

        self._stripes = stripes

        # cell -> set of connection_id, по полосам ячеек
        self._cell_locks = [threading.Lock() for _ in range(stripes)]
        self._members: list[dict[CellId, set[str]]] = [{} for _ in range(stripes)]

        # connection_id -> Subscription, по полосам соединений
        self._conn_locks = [threading.Lock() for _ in range(stripes)]
        self._reverse: list[dict[str, Subscription]] = [{} for _ in range(stripes)]

    # =========================================================================
    # ПОЛОСЫ
    # =========================================================================

    def _cell_stripe(self, cell: CellId) -> int:
        return hash(cell) % self._stripes

    def _conn_stripe(self, connection_id: str) -> int:
        return hash(connection_id) % self._stripes

    # =========================================================================
    # ОПЕРАЦИИ
    # =========================================================================

    def join(self, connection_id: str, cell: CellId) -> Subscription:
        """
        Подписать соединение на ячейку.

        Если соединение уже в другой ячейке, переносит его.
        Повторный join в ту же ячейку ничего не меняет.

        Returns:
            Текущая подписка соединения
        """
        conn_stripe = self._conn_stripe(connection_id)

        with self._conn_locks[conn_stripe]:
            reverse = self._reverse[conn_stripe]
            current = reverse.get(connection_id)

            if current is not None and current.cell == cell:
                return current

            subscription = Subscription(connection_id=connection_id, cell=cell)

            stripes = {self._cell_stripe(cell)}
            if current is not None:
                stripes.add(self._cell_stripe(current.cell))

            with ExitStack() as stack:
                for index in sorted(stripes):
                    stack.enter_context(self._cell_locks[index])

                if current is not None:
                    self._discard_member(current.cell, connection_id)
                self._members[self._cell_stripe(cell)].setdefault(cell, set()).add(connection_id)
                reverse[connection_id] = subscription

            return subscription

    def leave(self, connection_id: str) -> Subscription | None:
        """
        Снять подписку соединения.

        Returns:
            Снятая подписка или None, если соединение не было подписано
        """
        conn_stripe = self._conn_stripe(connection_id)

        with self._conn_locks[conn_stripe]:
            reverse = self._reverse[conn_stripe]
            current = reverse.get(connection_id)
            if current is None:
                return None

            with self._cell_locks[self._cell_stripe(current.cell)]:
                self._discard_member(current.cell, connection_id)
                del reverse[connection_id]

            return current

    def subscribers_of(self, cell: CellId) -> frozenset[str]:
        """Снимок подписчиков ячейки (неизменяемый)."""
        stripe = self._cell_stripe(cell)
        with self._cell_locks[stripe]:
            return frozenset(self._members[stripe].get(cell, ()))

    def subscription_of(self, connection_id: str) -> Subscription | None:
        """Текущая подписка соединения."""
        conn_stripe = self._conn_stripe(connection_id)
        with self._conn_locks[conn_stripe]:
            return self._reverse[conn_stripe].get(connection_id)

    def cell_of(self, connection_id: str) -> CellId | None:
        """Ячейка, на которую подписано соединение."""
        subscription = self.subscription_of(connection_id)
        return subscription.cell if subscription else None

    def _discard_member(self, cell: CellId, connection_id: str) -> None:
        # Вызывается под замком полосы ячейки
        members = self._members[self._cell_stripe(cell)]
        connections = members.get(cell)
        if connections is None:
            return
        connections.discard(connection_id)
        if not connections:
            del members[cell]

    # =========================================================================
    # СТАТИСТИКА И ОЧИСТКА
    # =========================================================================

    def get_stats(self) -> dict[str, Any]:
        """Количество ячеек, подписчиков и соединений с подпиской."""
        cells = 0
        subscribers = 0
        for lock, members in zip(self._cell_locks, self._members):
            with lock:
                cells += len(members)
                subscribers += sum(len(connections) for connections in members.values())

        connections = 0
        for lock, reverse in zip(self._conn_locks, self._reverse):
            with lock:
                connections += len(reverse)

        return {
            "cells": cells,
            "subscribers": subscribers,
            "connections": connections,
        }

    def clear(self) -> None:
        """Удалить все подписки (остановка хаба)."""
        with ExitStack() as stack:
            for lock in self._conn_locks:
                stack.enter_context(lock)
            for lock in self._cell_locks:
                stack.enter_context(lock)

            for members in self._members:
                members.clear()
            for reverse in self._reverse:
                reverse.clear()
