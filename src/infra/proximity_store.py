# src/infra/proximity_store.py
"""
Реализации хранилища вайбов с геопоиском.

- RedisProximityStore: Redis GEO индекс (+ множество околополярных id) и JSON документ на каждый вайб
- InMemoryProximityStore: словарь и перебор по Haversine (разработка, тесты)
"""

from __future__ import annotations

import math

from pydantic import ValidationError
from redis.exceptions import RedisError

from src.common.logger import log_error, log_warning
from src.core.exceptions import StoreUnavailable
from src.core.geo.cell import Coordinate
from src.core.geo.distance import haversine_m
from src.core.hub.store import ProximityStore
from src.infra.redis_client import RedisClient
from src.shared.models.vibe import Vibe


# Redis GEO принимает широты только в этом диапазоне
REDIS_GEO_MAX_LATITUDE = 85.05112878

# Redis считает расстояния по сфере радиусом 6372797.56 м, чуть больше EARTH_RADIUS_M;
# радиус поиска расширяется, результат отсекается по haversine_m
GEO_RADIUS_SLACK = 1.001


def fits_geo_index(latitude: float) -> bool:
    return -REDIS_GEO_MAX_LATITUDE <= latitude <= REDIS_GEO_MAX_LATITUDE


class RedisProximityStore(ProximityStore):
    """
    Хранилище вайбов в Redis.

    Ключи:
    - {namespace}:vibes:geo — GEO множество id вайбов
    - {namespace}:vibes:polar — id вайбов с широтой за пределами Redis GEO
    - {namespace}:vibe:{id} — JSON вайба

    Околополярные вайбы (|lat| > 85.05112878) не попадают в GEO индекс,
    find_near проверяет их перебором по Haversine.
    """

    GEO_KEY = "vibes:geo"
    POLAR_KEY = "vibes:polar"
    VIBE_PREFIX = "vibe:"

    def __init__(self, redis: RedisClient) -> None:
        self._redis = redis

    def _vibe_key(self, vibe_id: str) -> str:
        return f"{self.VIBE_PREFIX}{vibe_id}"

    async def find_near(
        self,
        center: Coordinate,
        max_distance_m: float,
        limit: int | None = None,
    ) -> list[Vibe]:
        """Вайбы в радиусе: GEOSEARCH BYRADIUS плюс околополярные вайбы."""
        search_center = center
        search_radius = max_distance_m * GEO_RADIUS_SLACK
        count = limit
        if not fits_geo_index(center.latitude):
            # Ищем от ближайшей допустимой широты с запасом, затем отсекаем по расстоянию
            search_center = Coordinate(
                math.copysign(REDIS_GEO_MAX_LATITUDE, center.latitude),
                center.longitude,
            )
            search_radius += haversine_m(center, search_center) * GEO_RADIUS_SLACK
            count = None

        try:
            members = await self._redis.geosearch_radius(
                self.GEO_KEY,
                longitude=search_center.longitude,
                latitude=search_center.latitude,
                radius_m=search_radius,
                count=count,
            )
            polar_ids = await self._redis.smembers(self.POLAR_KEY)
            vibe_ids = list(dict.fromkeys([member for member, _ in members] + sorted(polar_ids)))
            documents = await self._redis.mget([self._vibe_key(vibe_id) for vibe_id in vibe_ids])
        except RedisError as e:
            await log_error(f"GEOSEARCH не выполнен: {e}")
            raise StoreUnavailable("Хранилище вайбов недоступно") from e

        found: list[tuple[float, Vibe]] = []
        for vibe_id, document in zip(vibe_ids, documents):
            if document is None:
                # Документ удалён, а точка в индексе осталась
                await log_warning(f"Вайб {vibe_id} есть в геоиндексе, но без документа")
                continue
            try:
                vibe = Vibe.model_validate_json(document)
            except ValidationError as e:
                await log_error(f"Повреждённый документ вайба {vibe_id}: {e}")
                continue

            distance = haversine_m(center, vibe.coordinate)
            if distance <= max_distance_m:
                found.append((distance, vibe))

        found.sort(key=lambda item: item[0])
        if limit is not None:
            found = found[:limit]
        return [vibe for _, vibe in found]

    async def upsert(self, vibe: Vibe) -> Vibe:
        """
        Сохраняет документ и точку в одном MULTI/EXEC.

        Точка пишется либо в GEO индекс, либо в множество околополярных id,
        и удаляется из другого: обновление может перенести вайб через 85°.
        """
        coord = vibe.coordinate
        geo_key = self._redis.make_key(self.GEO_KEY)
        polar_key = self._redis.make_key(self.POLAR_KEY)
        try:
            pipe = self._redis.pipeline()
            if fits_geo_index(coord.latitude):
                pipe.geoadd(geo_key, (coord.longitude, coord.latitude, vibe.id))
                pipe.srem(polar_key, vibe.id)
            else:
                pipe.zrem(geo_key, vibe.id)
                pipe.sadd(polar_key, vibe.id)
            pipe.set(
                self._redis.make_key(self._vibe_key(vibe.id)),
                vibe.model_dump_json(by_alias=True),
            )
            await pipe.execute()
        except RedisError as e:
            await log_error(f"Не удалось сохранить вайб {vibe.id}: {e}")
            raise StoreUnavailable("Хранилище вайбов недоступно") from e

        return vibe

    async def get(self, vibe_id: str) -> Vibe | None:
        """Вайб по id; повреждённый документ считается отсутствующим."""
        try:
            document = await self._redis.get(self._vibe_key(vibe_id))
        except RedisError as e:
            await log_error(f"Не удалось прочитать вайб {vibe_id}: {e}")
            raise StoreUnavailable("Хранилище вайбов недоступно") from e

        if document is None:
            return None

        try:
            return Vibe.model_validate_json(document)
        except ValidationError as e:
            await log_error(f"Повреждённый документ вайба {vibe_id}: {e}")
            return None

    async def close(self) -> None:
        await self._redis.disconnect()


class InMemoryProximityStore(ProximityStore):
    """Хранилище в памяти процесса, поиск полным перебором."""

    def __init__(self) -> None:
        self._vibes: dict[str, Vibe] = {}

    def __len__(self) -> int:
        return len(self._vibes)

    async def find_near(
        self,
        center: Coordinate,
        max_distance_m: float,
        limit: int | None = None,
    ) -> list[Vibe]:
        nearby = []
        for vibe in self._vibes.values():
            distance = haversine_m(center, vibe.coordinate)
            if distance <= max_distance_m:
                nearby.append((distance, vibe))

        nearby.sort(key=lambda item: item[0])
        if limit is not None:
            nearby = nearby[:limit]
        return [vibe for _, vibe in nearby]

    async def upsert(self, vibe: Vibe) -> Vibe:
        # Хранилище держит собственную копию
        stored = vibe.model_copy(deep=True)
        self._vibes[stored.id] = stored
        return vibe

    async def get(self, vibe_id: str) -> Vibe | None:
        vibe = self._vibes.get(vibe_id)
        return vibe.model_copy(deep=True) if vibe else None
