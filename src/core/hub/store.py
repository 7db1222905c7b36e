# src/core/hub/store.py
"""
Интерфейс хранилища вайбов с геопоиском.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.core.geo.cell import Coordinate
from src.shared.models.vibe import Vibe


class ProximityStore(ABC):
    """
    Хранилище вайбов с геоиндексом.

    Все методы асинхронные и при ошибке бэкенда бросают StoreUnavailable.
    """

    @abstractmethod
    async def find_near(
        self,
        center: Coordinate,
        max_distance_m: float,
        limit: int | None = None,
    ) -> list[Vibe]:
        """
        Вайбы на расстоянии не больше max_distance_m метров от center.

        Без дубликатов, порядок не гарантируется.
        """

    @abstractmethod
    async def upsert(self, vibe: Vibe) -> Vibe:
        """Сохранить новый или изменённый вайб и обновить геоиндекс."""

    @abstractmethod
    async def get(self, vibe_id: str) -> Vibe | None:
        """Вайб по id или None."""

    async def close(self) -> None:
        """Освободить ресурсы хранилища."""
