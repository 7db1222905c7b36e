# src/shared/models/messages.py
"""
Сообщения WebSocket протокола.

Клиент → сервер: join, publish, update, ping (поле action).
Сервер → клиент: закрытый набор snapshot, created, updated, error, pong (поле kind).
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from src.common.constants import EventKind, VibeType
from src.core.exceptions import MalformedPayload
from src.shared.models.vibe import ArData, Vibe, VibeContent


# =============================================================================
# КЛИЕНТ → СЕРВЕР
# =============================================================================

class RawLocation(BaseModel):
    """
    Координаты в том виде, как их прислал клиент.

    Значения не типизированы: проверку диапазона и типа делает Coordinate,
    чтобы ошибка была InvalidCoordinate, а не MalformedPayload.
    """

    lat: Any
    lon: Any


class JoinRequest(BaseModel):
    """Подписка на ячейку по координатам."""

    action: Literal["join"]
    latitude: Any
    longitude: Any


class PublishRequest(BaseModel):
    """Создание нового вайба."""

    model_config = ConfigDict(populate_by_name=True)

    action: Literal["publish"]
    type: VibeType
    content: VibeContent = Field(default_factory=VibeContent)
    location: RawLocation
    created_by: str = Field(alias="createdBy", min_length=1)
    ar_data: ArData | None = Field(default=None, alias="arData")


class UpdateRequest(BaseModel):
    """Частичное обновление вайба по id."""

    model_config = ConfigDict(populate_by_name=True)

    action: Literal["update"]
    id: str = Field(min_length=1)
    type: VibeType | None = None
    content: VibeContent | None = None
    location: RawLocation | None = None
    ar_data: ArData | None = Field(default=None, alias="arData")


class PingRequest(BaseModel):
    """Keepalive, состояние не меняет."""

    action: Literal["ping"]


ClientMessage = Annotated[
    Union[JoinRequest, PublishRequest, UpdateRequest, PingRequest],
    Field(discriminator="action"),
]

_client_message_adapter: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)


def describe_validation_error(exc: ValidationError) -> str:
    """Человекочитаемое описание ошибок валидации."""
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ())) or "сообщение"
        parts.append(f"{location}: {error.get('msg')}")
    return "; ".join(parts)


def parse_client_message(
    raw: str | bytes | dict[str, Any],
) -> JoinRequest | PublishRequest | UpdateRequest | PingRequest:
    """
    Разбирает сообщение клиента.

    Raises:
        MalformedPayload: невалидный JSON, неизвестный action или нет обязательных полей
    """
    try:
        if isinstance(raw, dict):
            return _client_message_adapter.validate_python(raw)
        return _client_message_adapter.validate_json(raw)
    except ValidationError as e:
        raise MalformedPayload(f"Некорректное сообщение: {describe_validation_error(e)}") from e


# =============================================================================
# СЕРВЕР → КЛИЕНТ
# =============================================================================

class ServerMessage(BaseModel):
    """База для сообщений клиенту."""

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class SnapshotMessage(ServerMessage):
    """Начальный снимок вайбов рядом с точкой подписки."""

    kind: Literal["snapshot"] = "snapshot"
    entities: list[Vibe] = Field(default_factory=list)


class CreatedMessage(ServerMessage):
    """Новый вайб в ячейке."""

    kind: Literal["created"] = "created"
    entity: Vibe


class UpdatedMessage(ServerMessage):
    """Изменённый вайб в ячейке."""

    kind: Literal["updated"] = "updated"
    entity: Vibe


class ErrorMessage(ServerMessage):
    """Ошибка обработки запроса."""

    kind: Literal["error"] = "error"
    message: str
    code: str | None = None


class PongMessage(ServerMessage):
    """Ответ на ping."""

    kind: Literal["pong"] = "pong"


AnyServerMessage = Annotated[
    Union[SnapshotMessage, CreatedMessage, UpdatedMessage, ErrorMessage, PongMessage],
    Field(discriminator="kind"),
]


def event_message(kind: EventKind, vibe: Vibe) -> CreatedMessage | UpdatedMessage:
    """Сообщение о событии вайба."""
    if kind == EventKind.CREATED:
        return CreatedMessage(entity=vibe)
    return UpdatedMessage(entity=vibe)
