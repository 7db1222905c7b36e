# src/services/geo_ws/app.py
"""
FastAPI приложение гео-хаба.

WebSocket endpoints:
- /ws — подписка на ячейку и live-обновления вайбов
  (опционально ?lat=..&lon=.. для подписки сразу при подключении)

REST endpoints:
- GET /stats — статистика соединений и рассылок
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING

from fastapi import APIRouter, FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from src.common.constants import FanoutMode, ProximityBackend, TypeMsg
from src.common.logger import log_error, log_info, setup_logging
from src.core.hub.store import ProximityStore
from src.infra.proximity_store import InMemoryProximityStore, RedisProximityStore
from src.infra.redis_client import RedisClient
from src.services.geo_ws.hub import GeoHub
from src.services.geo_ws.redis_relay import RedisEventRelay

if TYPE_CHECKING:
    from src.config.loader import Settings


# === MODELS ===

class StatsResponse(BaseModel):
    """Статистика хаба."""
    active_connections: int
    total_connections_ever: int
    total_errors: int
    subscribed_cells: int
    subscribers: int
    total_dispatches: int
    total_delivered: int
    total_failed: int
    relay_published: int = 0
    relay_received: int = 0


# === RUNTIME ===

@dataclass
class HubRuntime:
    """Всё, что создаётся при старте и закрывается при остановке."""
    hub: GeoHub
    store: ProximityStore
    relay: RedisEventRelay | None = None
    redis: RedisClient | None = None

    async def close(self) -> None:
        if self.relay:
            await self.relay.stop()
        await self.hub.close()
        await self.store.close()
        if self.redis:
            await self.redis.disconnect()


async def build_runtime(settings: "Settings") -> HubRuntime:
    """Собирает хранилище, хаб и relay по конфигурации."""
    redis_client: RedisClient | None = None

    async def get_redis() -> RedisClient:
        nonlocal redis_client
        if redis_client is None:
            redis_client = RedisClient(namespace=settings.redis.REDIS_NAMESPACE)
            await redis_client.connect(
                settings.redis.url,
                max_connections=settings.redis.REDIS_MAX_CONNECTIONS,
            )
        return redis_client

    store: ProximityStore
    if settings.hub.PROXIMITY_BACKEND == ProximityBackend.MEMORY:
        store = InMemoryProximityStore()
    else:
        store = RedisProximityStore(await get_redis())

    hub = GeoHub.from_settings(settings, store)

    relay = None
    if settings.hub.FANOUT_MODE == FanoutMode.REDIS:
        relay = RedisEventRelay(
            await get_redis(),
            hub.schedule_local,
            cell_precision=settings.geo.CELL_PRECISION,
        )
        await relay.start()
        hub.set_event_publisher(relay.publish)

    await log_info(
        f"Гео-хаб запущен: хранилище={settings.hub.PROXIMITY_BACKEND.value}, "
        f"рассылка={settings.hub.FANOUT_MODE.value}",
        type_msg=TypeMsg.INFO,
    )
    return HubRuntime(hub=hub, store=store, relay=relay, redis=redis_client)


# === ROUTES ===

router = APIRouter()


@router.get("/stats", response_model=StatsResponse, tags=["Stats"])
async def get_stats(request: Request) -> StatsResponse:
    """Получить статистику хаба."""
    hub: GeoHub = request.app.state.hub
    stats = hub.get_stats()

    relay: RedisEventRelay | None = getattr(request.app.state, "relay", None)
    if relay is not None:
        stats.update(relay.get_stats())

    return StatsResponse(**stats)


@router.websocket("/ws")
async def websocket_geo(
    websocket: WebSocket,
    lat: float | None = Query(default=None),
    lon: float | None = Query(default=None),
) -> None:
    """
    WebSocket клиента карты.

    Входящие сообщения:
    - {"action": "join", "latitude": 52.52, "longitude": 13.405}
    - {"action": "publish", "type": "text", "content": {...},
       "location": {"lat": .., "lon": ..}, "createdBy": "..", "arData": {...}}
    - {"action": "update", "id": "..", ...изменённые поля}
    - {"action": "ping"}

    Исходящие: snapshot, created, updated, error, pong.

    Соединение закрывается, если idle_timeout секунд не было сообщений
    ни от клиента, ни клиенту.
    """
    hub: GeoHub = websocket.app.state.hub
    idle_timeout: float = websocket.app.state.idle_timeout

    session = await hub.connect(websocket)

    try:
        if lat is not None and lon is not None:
            await hub.handle_message(session, {"action": "join", "latitude": lat, "longitude": lon})

        while True:
            remaining = idle_timeout - session.idle_seconds
            if remaining <= 0:
                raise asyncio.TimeoutError

            try:
                raw = await asyncio.wait_for(websocket.receive_text(), timeout=remaining)
            except asyncio.TimeoutError:
                # За это время могли уйти события клиенту
                continue

            session.touch()
            await hub.handle_message(session, raw)

    except WebSocketDisconnect:
        pass
    except asyncio.TimeoutError:
        await log_info(
            f"Соединение {session.connection_id} закрыто по таймауту простоя",
            type_msg=TypeMsg.DEBUG,
        )
        await session.close_channel(code=1000)
    except Exception as e:
        await log_error(f"Ошибка соединения {session.connection_id}: {e!r}", exc_info=True)
    finally:
        await hub.disconnect(session)


# === APP ===

def create_app(
    hub: GeoHub | None = None,
    settings: "Settings | None" = None,
) -> FastAPI:
    """
    Создаёт приложение.

    Args:
        hub: Готовый хаб (тесты); иначе собирается из конфигурации при старте
        settings: Настройки; по умолчанию из config.json
    """
    if settings is None:
        from src.config import settings as default_settings
        settings = default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Жизненный цикл приложения."""
        setup_logging()

        runtime: HubRuntime | None = None
        if hub is None:
            runtime = await build_runtime(settings)
            app.state.hub = runtime.hub
            app.state.relay = runtime.relay
        else:
            app.state.hub = hub
            app.state.relay = None

        yield

        if runtime is not None:
            await runtime.close()
        else:
            await hub.close()

    app = FastAPI(
        title="VibeMap Geo Hub",
        description="WebSocket хаб live-обновлений вайбов по ячейкам карты.",
        version=settings.system.VERSION,
        lifespan=lifespan,
    )
    app.state.idle_timeout = settings.hub.IDLE_TIMEOUT
    app.include_router(router)
    return app


app = create_app()


# === STARTUP ===

if __name__ == "__main__":
    import uvicorn
    from src.config import settings as run_settings

    uvicorn.run(app, host=run_settings.hub.WS_HOST, port=run_settings.hub.WS_PORT)
