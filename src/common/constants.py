# src/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class VibeType(str, Enum):
    """Типы вайбов."""
    TEXT = "text"
    PHOTO = "photo"
    AR = "ar"


class EventKind(str, Enum):
    """Виды событий, рассылаемых подписчикам ячейки."""
    CREATED = "created"
    UPDATED = "updated"


class ProximityBackend(str, Enum):
    """Хранилища для геопоиска."""
    REDIS = "redis"
    MEMORY = "memory"


class FanoutMode(str, Enum):
    """Режим рассылки событий."""
    LOCAL = "local"  # только в рамках процесса
    REDIS = "redis"  # через Redis Pub/Sub на все инстансы
