# src/infra/__init__.py
"""
Инфраструктурный слой.
Работа с Redis: геоиндекс вайбов и Pub/Sub.
"""

from src.infra.redis_client import RedisClient
from src.infra.proximity_store import InMemoryProximityStore, RedisProximityStore

__all__ = [
    "RedisClient",
    "InMemoryProximityStore",
    "RedisProximityStore",
]
