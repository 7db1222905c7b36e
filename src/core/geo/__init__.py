# src/core/geo/__init__.py
"""
Геометрия хаба: координаты, ячейки, расстояния.
"""

from src.core.geo.cell import CellId, Coordinate, compute_cell, DEFAULT_CELL_PRECISION
from src.core.geo.distance import haversine_m, EARTH_RADIUS_M

__all__ = [
    "CellId",
    "Coordinate",
    "compute_cell",
    "DEFAULT_CELL_PRECISION",
    "haversine_m",
    "EARTH_RADIUS_M",
]
