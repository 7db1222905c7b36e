# src/core/exceptions.py
"""
Ошибки гео-хаба.

Каждая ошибка относится к одному запросу одного соединения
и никогда не роняет хаб целиком.
"""

from __future__ import annotations


class HubError(Exception):
    """Базовая ошибка хаба."""

    code: str = "hub_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidCoordinate(HubError):
    """Широта/долгота вне диапазона или не число."""

    code = "invalid_coordinate"


class MalformedPayload(HubError):
    """Сообщение клиента не разбирается или не содержит обязательных полей."""

    code = "malformed_payload"


class StoreUnavailable(HubError):
    """Хранилище не ответило на запрос (можно повторить)."""

    code = "store_unavailable"


class VibeNotFound(HubError):
    """Вайб для обновления не найден."""

    code = "vibe_not_found"


class DeliveryFailure(HubError):
    """Не удалось доставить сообщение одному подписчику."""

    code = "delivery_failure"

    def __init__(self, connection_id: str, reason: str) -> None:
        super().__init__(f"Доставка в {connection_id} не удалась: {reason}")
        self.connection_id = connection_id
        self.reason = reason
