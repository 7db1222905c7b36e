# src/shared/models/vibe.py
"""
Модель вайба: контент, привязанный к точке на карте.
Имена полей на проводе совпадают с клиентом (createdBy, arData, mediaUrl).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from src.common.constants import VibeType
from src.core.geo.cell import Coordinate


class GeoPoint(BaseModel):
    """Точка вайба на карте."""

    lat: float
    lon: float

    @classmethod
    def from_coordinate(cls, coord: Coordinate) -> "GeoPoint":
        return cls(lat=coord.latitude, lon=coord.longitude)


class VibeContent(BaseModel):
    """Содержимое вайба."""

    model_config = ConfigDict(populate_by_name=True)

    caption: str | None = None
    media_url: str | None = Field(default=None, alias="mediaUrl")


class ArPosition(BaseModel):
    """Позиция AR-объекта относительно точки."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


class ArData(BaseModel):
    """Данные дополненной реальности."""

    position: ArPosition = Field(default_factory=ArPosition)


class Vibe(BaseModel):
    """
    Вайб.

    Хаб читает только id и location, остальное является полезной нагрузкой,
    которую хранилище сохраняет и отдаёт как есть.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    type: VibeType
    content: VibeContent = Field(default_factory=VibeContent)
    location: GeoPoint
    created_by: str = Field(alias="createdBy", min_length=1)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        alias="createdAt",
    )
    ar_data: ArData | None = Field(default=None, alias="arData")
    likes: int = Field(default=0, ge=0)

    @property
    def coordinate(self) -> Coordinate:
        """
        Координата вайба.

        Raises:
            InvalidCoordinate: если location вне допустимого диапазона
        """
        return Coordinate(latitude=self.location.lat, longitude=self.location.lon)

    def to_wire(self) -> dict[str, Any]:
        """Словарь для отправки клиенту."""
        return self.model_dump(mode="json", by_alias=True)
