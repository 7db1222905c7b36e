# src/core/geo/cell.py
"""
Разбиение карты на ячейки.

Координата округляется до CELL_PRECISION знаков после запятой
(по умолчанию 2, т.е. 0.01° ≈ 1.1 км по широте, по долготе уже к полюсам).
Ячейка хранит округлённые значения как целые числа, поэтому равенство
и хеш не зависят от форматирования float.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR
from typing import Any

from src.core.exceptions import InvalidCoordinate


DEFAULT_CELL_PRECISION = 2

LAT_RANGE = (-90.0, 90.0)
LON_RANGE = (-180.0, 180.0)


def _check_component(name: str, value: Any, bounds: tuple[float, float]) -> float:
    """Проверяет одну компоненту координаты и приводит её к float."""
    # bool является подклассом int
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidCoordinate(f"{name} должна быть числом, получено: {value!r}")

    try:
        number = float(value)
    except (OverflowError, ValueError):
        raise InvalidCoordinate(f"{name} слишком велика по модулю") from None

    if not math.isfinite(number):
        raise InvalidCoordinate(f"{name} должна быть конечным числом, получено: {value!r}")

    low, high = bounds
    if not low <= number <= high:
        raise InvalidCoordinate(f"{name} вне диапазона [{low:g}, {high:g}]: {number}")

    return number


@dataclass(frozen=True)
class Coordinate:
    """Геоточка (широта, долгота) в градусах."""
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "latitude", _check_component("latitude", self.latitude, LAT_RANGE))
        object.__setattr__(self, "longitude", _check_component("longitude", self.longitude, LON_RANGE))

    @classmethod
    def from_values(cls, latitude: Any, longitude: Any) -> "Coordinate":
        """Создаёт координату из сырых значений клиента."""
        return cls(latitude=latitude, longitude=longitude)


@dataclass(frozen=True)
class CellId:
    """
    Идентификатор ячейки.

    lat_index/lon_index — координаты, умноженные на 10**precision и округлённые.
    """
    lat_index: int
    lon_index: int
    precision: int = DEFAULT_CELL_PRECISION

    @property
    def key(self) -> str:
        """Стабильная строка для логов и имён каналов, например '52.52:13.40'."""
        return f"{self._format(self.lat_index)}:{self._format(self.lon_index)}"

    def _format(self, index: int) -> str:
        value = Decimal(index).scaleb(-self.precision)
        return f"{value:.{self.precision}f}"

    def __str__(self) -> str:
        return self.key


def _quantize(value: float, precision: int) -> int:
    # Округляется кратчайшее десятичное представление (repr), а не value * 10**precision.
    # Половина уходит к +inf, как Math.round: 0.125 -> 0.13, -0.125 -> -0.12
    scaled = Decimal(repr(value)).scaleb(precision)
    return int((scaled + Decimal("0.5")).to_integral_value(rounding=ROUND_FLOOR))


def compute_cell(coord: Coordinate, precision: int = DEFAULT_CELL_PRECISION) -> CellId:
    """
    Вычисляет ячейку для координаты.

    Чистая функция: одинаковый вход всегда даёт равный CellId.

    Raises:
        InvalidCoordinate: если координата не прошла проверку
    """
    if not isinstance(coord, Coordinate):
        raise InvalidCoordinate(f"Ожидалась Coordinate, получено: {type(coord).__name__}")

    return CellId(
        lat_index=_quantize(coord.latitude, precision),
        lon_index=_quantize(coord.longitude, precision),
        precision=precision,
    )
