# tests/core/test_proximity_store.py
"""
Тесты для хранилищ вайбов с геопоиском.
"""

from __future__ import annotations

from typing import Callable
from unittest.mock import AsyncMock, MagicMock

import fakeredis
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError

from src.core.exceptions import StoreUnavailable
from src.core.geo.cell import Coordinate
from src.infra.proximity_store import (
    GEO_RADIUS_SLACK,
    REDIS_GEO_MAX_LATITUDE,
    InMemoryProximityStore,
    RedisProximityStore,
)
from src.infra.redis_client import RedisClient
from src.shared.models.vibe import Vibe, VibeContent


METERS_PER_DEGREE_LAT = 111194.93


def north_of(center: Coordinate, meters: float) -> tuple[float, float]:
    """Точка в meters метрах к северу от center."""
    return center.latitude + meters / METERS_PER_DEGREE_LAT, center.longitude


class TestInMemoryProximityStore:
    """Тесты для InMemoryProximityStore."""

    @pytest.mark.asyncio
    async def test_find_near_filters_by_radius(
        self,
        memory_store: InMemoryProximityStore,
        make_vibe: Callable[..., Vibe],
        berlin: Coordinate,
    ) -> None:
        """Вайб в 500 м попадает в снимок, в 1500 м — нет."""
        near = make_vibe(*north_of(berlin, 500))
        far = make_vibe(*north_of(berlin, 1500))
        await memory_store.upsert(near)
        await memory_store.upsert(far)

        result = await memory_store.find_near(berlin, 1000)

        assert [v.id for v in result] == [near.id]

    @pytest.mark.asyncio
    async def test_find_near_sorted_and_limited(
        self,
        memory_store: InMemoryProximityStore,
        make_vibe: Callable[..., Vibe],
        berlin: Coordinate,
    ) -> None:
        """Ближайшие первыми, не больше limit."""
        vibes = [make_vibe(*north_of(berlin, meters)) for meters in (900, 100, 500)]
        for vibe in vibes:
            await memory_store.upsert(vibe)

        result = await memory_store.find_near(berlin, 1000, limit=2)

        assert [v.id for v in result] == [vibes[1].id, vibes[2].id]

    @pytest.mark.asyncio
    async def test_find_near_empty(self, memory_store: InMemoryProximityStore, berlin: Coordinate) -> None:
        """Пустое хранилище — пустой снимок."""
        assert await memory_store.find_near(berlin, 1000) == []

    @pytest.mark.asyncio
    async def test_upsert_replaces_by_id(
        self,
        memory_store: InMemoryProximityStore,
        make_vibe: Callable[..., Vibe],
        berlin: Coordinate,
    ) -> None:
        """upsert с тем же id заменяет вайб, в том числе его точку."""
        vibe = make_vibe(berlin.latitude, berlin.longitude)
        await memory_store.upsert(vibe)

        moved = vibe.model_copy(update={"location": vibe.location.model_copy(update={"lat": 48.8566, "lon": 2.3522})})
        await memory_store.upsert(moved)

        assert len(memory_store) == 1
        assert await memory_store.find_near(berlin, 1000) == []
        assert [v.id for v in await memory_store.find_near(Coordinate(48.8566, 2.3522), 1000)] == [vibe.id]

    @pytest.mark.asyncio
    async def test_get(self, memory_store: InMemoryProximityStore, make_vibe: Callable[..., Vibe]) -> None:
        """get возвращает копию сохранённого вайба."""
        vibe = make_vibe(caption="original")
        await memory_store.upsert(vibe)

        vibe.content.caption = "changed after upsert"
        loaded = await memory_store.get(vibe.id)

        assert loaded is not None
        assert loaded.content.caption == "original"
        assert await memory_store.get("missing") is None


class TestRedisProximityStore:
    """Тесты для RedisProximityStore с замоканным клиентом."""

    @pytest.fixture
    def redis(self) -> MagicMock:
        client = MagicMock()
        client.make_key.side_effect = lambda key: f"vibemap:{key}"
        client.geosearch_radius = AsyncMock(return_value=[])
        client.mget = AsyncMock(return_value=[])
        client.smembers = AsyncMock(return_value=set())
        client.get = AsyncMock(return_value=None)
        client.disconnect = AsyncMock()
        return client

    @pytest.fixture
    def store(self, redis: MagicMock) -> RedisProximityStore:
        return RedisProximityStore(redis)

    @pytest.mark.asyncio
    async def test_find_near(
        self,
        store: RedisProximityStore,
        redis: MagicMock,
        make_vibe: Callable[..., Vibe],
        berlin: Coordinate,
    ) -> None:
        """GEOSEARCH, затем MGET документов в порядке расстояния."""
        first = make_vibe(caption="first")
        second = make_vibe(caption="second")
        redis.geosearch_radius.return_value = [(first.id, 10.0), (second.id, 20.0)]
        redis.mget.return_value = [
            first.model_dump_json(by_alias=True),
            second.model_dump_json(by_alias=True),
        ]

        result = await store.find_near(berlin, 1000, limit=5)

        assert [v.id for v in result] == [first.id, second.id]
        assert result[0].content == VibeContent(caption="first")
        redis.geosearch_radius.assert_awaited_once_with(
            "vibes:geo",
            longitude=berlin.longitude,
            latitude=berlin.latitude,
            radius_m=1000 * GEO_RADIUS_SLACK,
            count=5,
        )
        redis.mget.assert_awaited_once_with([f"vibe:{first.id}", f"vibe:{second.id}"])

    @pytest.mark.asyncio
    async def test_find_near_skips_missing_and_corrupt(
        self,
        store: RedisProximityStore,
        redis: MagicMock,
        make_vibe: Callable[..., Vibe],
        berlin: Coordinate,
    ) -> None:
        """Точка без документа и битый JSON пропускаются."""
        good = make_vibe()
        redis.geosearch_radius.return_value = [("gone", 1.0), ("broken", 2.0), (good.id, 3.0)]
        redis.mget.return_value = [None, "{not json", good.model_dump_json(by_alias=True)]

        result = await store.find_near(berlin, 1000)

        assert [v.id for v in result] == [good.id]

    @pytest.mark.asyncio
    async def test_find_near_polar_center(
        self,
        store: RedisProximityStore,
        redis: MagicMock,
        make_vibe: Callable[..., Vibe],
    ) -> None:
        """Центр за пределами Redis GEO: поиск от границы, околополярные id перебором."""
        pole_vibe = make_vibe(88.0005, 10.0)
        far_vibe = make_vibe(88.5, 10.0)
        redis.smembers.return_value = {pole_vibe.id, far_vibe.id}
        redis.mget.side_effect = lambda keys: [
            {
                f"vibe:{pole_vibe.id}": pole_vibe.model_dump_json(by_alias=True),
                f"vibe:{far_vibe.id}": far_vibe.model_dump_json(by_alias=True),
            }[key]
            for key in keys
        ]

        result = await store.find_near(Coordinate(88.0, 10.0), 1000, limit=5)

        assert [v.id for v in result] == [pole_vibe.id]
        kwargs = redis.geosearch_radius.await_args.kwargs
        assert kwargs["latitude"] == REDIS_GEO_MAX_LATITUDE
        assert kwargs["radius_m"] > 1000 + 300_000
        assert kwargs["count"] is None

    @pytest.mark.asyncio
    async def test_find_near_redis_error(
        self,
        store: RedisProximityStore,
        redis: MagicMock,
        berlin: Coordinate,
    ) -> None:
        """Ошибка Redis превращается в StoreUnavailable."""
        redis.geosearch_radius.side_effect = RedisConnectionError("connection refused")

        with pytest.raises(StoreUnavailable):
            await store.find_near(berlin, 1000)

    @pytest.mark.asyncio
    async def test_upsert(
        self,
        store: RedisProximityStore,
        redis: MagicMock,
        make_vibe: Callable[..., Vibe],
    ) -> None:
        """Точка и документ пишутся одним пайплайном."""
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=[1, True])
        redis.pipeline.return_value = pipe
        vibe = make_vibe(52.52, 13.405)

        result = await store.upsert(vibe)

        assert result is vibe
        pipe.geoadd.assert_called_once_with("vibemap:vibes:geo", (13.405, 52.52, vibe.id))
        pipe.srem.assert_called_once_with("vibemap:vibes:polar", vibe.id)
        pipe.sadd.assert_not_called()
        key, document = pipe.set.call_args.args
        assert key == f"vibemap:vibe:{vibe.id}"
        assert Vibe.model_validate_json(document) == vibe
        pipe.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_upsert_polar_skips_geo_index(
        self,
        store: RedisProximityStore,
        redis: MagicMock,
        make_vibe: Callable[..., Vibe],
    ) -> None:
        """Широта за пределами Redis GEO не ставит GEOADD в транзакцию."""
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=[0, 1, True])
        redis.pipeline.return_value = pipe
        vibe = make_vibe(-89.5, 0.0)

        await store.upsert(vibe)

        pipe.geoadd.assert_not_called()
        pipe.zrem.assert_called_once_with("vibemap:vibes:geo", vibe.id)
        pipe.sadd.assert_called_once_with("vibemap:vibes:polar", vibe.id)
        assert pipe.set.call_args.args[0] == f"vibemap:vibe:{vibe.id}"

    @pytest.mark.asyncio
    async def test_upsert_redis_error(
        self,
        store: RedisProximityStore,
        redis: MagicMock,
        make_vibe: Callable[..., Vibe],
    ) -> None:
        """Ошибка пайплайна превращается в StoreUnavailable."""
        pipe = MagicMock()
        pipe.execute = AsyncMock(side_effect=RedisError("READONLY"))
        redis.pipeline.return_value = pipe

        with pytest.raises(StoreUnavailable):
            await store.upsert(make_vibe())

    @pytest.mark.asyncio
    async def test_get(
        self,
        store: RedisProximityStore,
        redis: MagicMock,
        make_vibe: Callable[..., Vibe],
    ) -> None:
        """get читает документ по id."""
        vibe = make_vibe()
        redis.get.return_value = vibe.model_dump_json(by_alias=True)

        assert await store.get(vibe.id) == vibe
        redis.get.assert_awaited_once_with(f"vibe:{vibe.id}")

        redis.get.return_value = None
        assert await store.get("missing") is None

    @pytest.mark.asyncio
    async def test_get_corrupt_document(self, store: RedisProximityStore, redis: MagicMock) -> None:
        """Повреждённый документ не роняет запрос, вайб считается отсутствующим."""
        redis.get.return_value = '{"id": "abc", "type": "video"}'

        assert await store.get("abc") is None

    @pytest.mark.asyncio
    async def test_close(self, store: RedisProximityStore, redis: MagicMock) -> None:
        """close отключает клиента."""
        await store.close()
        redis.disconnect.assert_awaited_once()


class TestRedisProximityStoreOnFakeRedis:
    """RedisProximityStore поверх fakeredis: реальные GEO команды и транзакции."""

    @pytest.fixture
    def raw(self) -> fakeredis.FakeAsyncRedis:
        return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)

    @pytest.fixture
    def store(self, raw: fakeredis.FakeAsyncRedis) -> RedisProximityStore:
        client = RedisClient(namespace="vibemap")
        client._client = raw
        return RedisProximityStore(client)

    @pytest.mark.asyncio
    async def test_regular_vibe(
        self,
        store: RedisProximityStore,
        raw: fakeredis.FakeAsyncRedis,
        make_vibe: Callable[..., Vibe],
        berlin: Coordinate,
    ) -> None:
        """Обычный вайб попадает в GEO индекс и находится по радиусу."""
        near = make_vibe(*north_of(berlin, 200), caption="near")
        far = make_vibe(*north_of(berlin, 1500), caption="far")
        await store.upsert(near)
        await store.upsert(far)

        result = await store.find_near(berlin, 1000)

        assert [v.id for v in result] == [near.id]
        assert await raw.zscore("vibemap:vibes:geo", near.id) is not None
        assert await store.get(near.id) == near

    @pytest.mark.asyncio
    @pytest.mark.parametrize("lat", [88.0, -90.0, 90.0])
    async def test_polar_vibe_stored_and_found(
        self,
        store: RedisProximityStore,
        raw: fakeredis.FakeAsyncRedis,
        make_vibe: Callable[..., Vibe],
        lat: float,
    ) -> None:
        """Вайб за пределами Redis GEO сохраняется целиком и виден в снимке."""
        vibe = make_vibe(lat, 10.0)

        assert await store.upsert(vibe) is vibe

        assert await raw.zscore("vibemap:vibes:geo", vibe.id) is None
        assert await raw.sismember("vibemap:vibes:polar", vibe.id)
        assert await store.get(vibe.id) == vibe
        assert [v.id for v in await store.find_near(Coordinate(lat, 10.0), 1000)] == [vibe.id]

    @pytest.mark.asyncio
    async def test_update_moves_between_indexes(
        self,
        store: RedisProximityStore,
        raw: fakeredis.FakeAsyncRedis,
        make_vibe: Callable[..., Vibe],
    ) -> None:
        """Перенос вайба через границу 85° не оставляет точку в старом индексе."""
        vibe = make_vibe(85.0, 10.0)
        await store.upsert(vibe)

        moved = vibe.model_copy(update={"location": vibe.location.model_copy(update={"lat": 88.0})})
        await store.upsert(moved)

        assert await raw.zscore("vibemap:vibes:geo", vibe.id) is None
        assert await store.find_near(Coordinate(85.0, 10.0), 1000) == []
        assert [v.id for v in await store.find_near(Coordinate(88.0, 10.0), 1000)] == [vibe.id]

        await store.upsert(vibe)

        assert not await raw.sismember("vibemap:vibes:polar", vibe.id)
        assert [v.id for v in await store.find_near(Coordinate(85.0, 10.0), 1000)] == [vibe.id]

    @pytest.mark.asyncio
    async def test_polar_center_sees_indexed_vibes(
        self,
        store: RedisProximityStore,
        make_vibe: Callable[..., Vibe],
    ) -> None:
        """Центр выше 85.05° находит вайбы из GEO индекса рядом с границей."""
        below = make_vibe(85.05, 10.0, caption="below")
        above = make_vibe(85.07, 10.0, caption="above")
        await store.upsert(below)
        await store.upsert(above)

        result = await store.find_near(Coordinate(85.06, 10.0), 5000)

        assert {v.id for v in result} == {below.id, above.id}
