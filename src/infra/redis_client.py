# src/infra/redis_client.py
"""
Клиент Redis для геоиндекса вайбов и Pub/Sub между инстансами хаба.
"""

from __future__ import annotations

import redis.asyncio as redis
from redis.asyncio.client import Pipeline, PubSub

from src.common.constants import TypeMsg
from src.common.logger import log_info


class RedisClient:
    """
    Асинхронный клиент Redis.
    Поддерживает:
    - Ключи с namespace
    - Geo-операции (GEOADD, GEOSEARCH)
    - Пайплайны
    - Pub/Sub
    """

    def __init__(self, namespace: str = "vibemap") -> None:
        self._client: redis.Redis | None = None
        self._namespace = namespace

    @property
    def client(self) -> redis.Redis:
        """Возвращает клиент Redis."""
        if self._client is None:
            raise RuntimeError("Redis клиент не инициализирован. Вызовите connect() сначала.")
        return self._client

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    def make_key(self, key: str) -> str:
        """Добавляет namespace к ключу."""
        return f"{self._namespace}:{key}"

    async def connect(
        self,
        url: str | None = None,
        max_connections: int = 50,
    ) -> None:
        """
        Подключается к Redis.

        Args:
            url: URL Redis (если None, берётся из конфига)
            max_connections: Максимальное количество соединений
        """
        if self._client is not None:
            return

        if url is None:
            from src.config import settings
            url = settings.redis.url
            max_connections = settings.redis.REDIS_MAX_CONNECTIONS
            self._namespace = settings.redis.REDIS_NAMESPACE

        await log_info("Подключение к Redis...", type_msg=TypeMsg.INFO)

        self._client = redis.from_url(
            url,
            max_connections=max_connections,
            decode_responses=True,
        )
        await self._client.ping()

        await log_info("Подключение к Redis установлено", type_msg=TypeMsg.INFO)

    async def disconnect(self) -> None:
        """Закрывает соединение с Redis."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            await log_info("Соединение с Redis закрыто", type_msg=TypeMsg.INFO)

    # =========================================================================
    # ОПЕРАЦИИ
    # =========================================================================

    def pipeline(self) -> Pipeline:
        """Транзакционный пайплайн."""
        return self.client.pipeline(transaction=True)

    async def get(self, key: str) -> str | None:
        """Получает значение по ключу."""
        return await self.client.get(self.make_key(key))

    async def mget(self, keys: list[str]) -> list[str | None]:
        """Получает значения нескольких ключей одним запросом."""
        if not keys:
            return []
        return await self.client.mget([self.make_key(key) for key in keys])

    async def smembers(self, key: str) -> set[str]:
        """Участники множества."""
        return await self.client.smembers(self.make_key(key))

    async def geosearch_radius(
        self,
        key: str,
        longitude: float,
        latitude: float,
        radius_m: float,
        count: int | None = None,
    ) -> list[tuple[str, float]]:
        """
        Участники geo-множества в радиусе от точки.

        Returns:
            Список (member, distance_m), ближайшие первыми
        """
        results = await self.client.geosearch(
            self.make_key(key),
            longitude=longitude,
            latitude=latitude,
            radius=radius_m,
            unit="m",
            sort="ASC",
            count=count,
            withdist=True,
        )
        return [(member, float(distance)) for member, distance in results]

    async def publish(self, channel: str, message: str) -> int:
        """Публикует сообщение в канал (с namespace)."""
        return await self.client.publish(self.make_key(channel), message)

    def pubsub(self) -> PubSub:
        """Новый Pub/Sub объект."""
        return self.client.pubsub()

