# src/core/geo/distance.py
import math

from src.core.geo.cell import Coordinate


EARTH_RADIUS_M = 6371000.0  # Средний радиус Земли в метрах


def haversine_m(a: Coordinate, b: Coordinate) -> float:
    """
    Вычисляет расстояние между двумя точками (в метрах) по формуле Haversine.
    """
    dlat = math.radians(b.latitude - a.latitude)
    dlon = math.radians(b.longitude - a.longitude)

    h = (math.sin(dlat / 2) ** 2 +
         math.cos(math.radians(a.latitude)) * math.cos(math.radians(b.latitude)) *
         math.sin(dlon / 2) ** 2)

    # h может чуть превысить 1 из-за погрешности float
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(h)))
