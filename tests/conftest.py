# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import asyncio
import os
from typing import Any, Callable

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("REDIS_PASSWORD", "")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from src.common.constants import VibeType
from src.core.geo.cell import Coordinate
from src.core.hub.registry import SubscriptionRegistry
from src.core.hub.session import ConnectionSession
from src.infra.proximity_store import InMemoryProximityStore
from src.services.geo_ws.hub import GeoHub
from src.shared.models.vibe import GeoPoint, Vibe, VibeContent


# =============================================================================
# ФЕЙКОВЫЙ ТРАНСПОРТ
# =============================================================================

class FakeWebSocket:
    """
    WebSocket для тестов.

    fail=True — send_json бросает ошибку, delay — задержка перед отправкой.
    """

    def __init__(self, *, fail: bool = False, delay: float = 0.0) -> None:
        self.sent: list[dict[str, Any]] = []
        self.accepted = False
        self.closed_code: int | None = None
        self.fail = fail
        self.delay = delay

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, data: Any) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("соединение разорвано")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.closed_code = code

    def kinds(self) -> list[str]:
        return [message["kind"] for message in self.sent]

    def last(self) -> dict[str, Any]:
        return self.sent[-1]


@pytest.fixture
def ws_factory() -> Callable[..., FakeWebSocket]:
    """Фабрика фейковых WebSocket."""
    return FakeWebSocket


# =============================================================================
# ФИКСТУРЫ ЯДРА
# =============================================================================

@pytest.fixture
def registry() -> SubscriptionRegistry:
    """Пустой реестр подписок."""
    return SubscriptionRegistry(stripes=8)


@pytest.fixture
def memory_store() -> InMemoryProximityStore:
    """Хранилище вайбов в памяти."""
    return InMemoryProximityStore()


@pytest.fixture
def make_vibe() -> Callable[..., Vibe]:
    """Фабрика вайбов."""

    def _make(
        lat: float = 52.5200,
        lon: float = 13.4050,
        *,
        created_by: str = "user-1",
        caption: str = "Hello from the map",
        vibe_type: VibeType = VibeType.TEXT,
        **kwargs: Any,
    ) -> Vibe:
        return Vibe(
            type=vibe_type,
            content=VibeContent(caption=caption),
            location=GeoPoint(lat=lat, lon=lon),
            created_by=created_by,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_session(
    registry: SubscriptionRegistry,
    memory_store: InMemoryProximityStore,
) -> Callable[..., ConnectionSession]:
    """Фабрика сессий поверх общего реестра и хранилища."""

    def _make(connection_id: str, websocket: FakeWebSocket | None = None) -> ConnectionSession:
        return ConnectionSession(
            connection_id,
            websocket or FakeWebSocket(),
            registry,
            memory_store,
            snapshot_radius_m=1000.0,
        )

    return _make


@pytest.fixture
def hub(memory_store: InMemoryProximityStore) -> GeoHub:
    """Хаб с хранилищем в памяти и коротким таймаутом доставки."""
    return GeoHub(
        memory_store,
        registry=SubscriptionRegistry(stripes=8),
        snapshot_radius_m=1000.0,
        snapshot_limit=50,
        delivery_timeout=0.2,
    )


@pytest.fixture
def berlin() -> Coordinate:
    """Центр Берлина."""
    return Coordinate(52.5200, 13.4050)
