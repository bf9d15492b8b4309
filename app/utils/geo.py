from math import radians, cos, sin, atan2, sqrt, ceil
from typing import Tuple

from app.config import settings

# Mean Earth radius in kilometers
EARTH_RADIUS_KM = 6371.0


def is_valid_coordinate(lat: float, lng: float) -> bool:
    return -90 <= lat <= 90 and -180 <= lng <= 180


def haversine_km(point1: Tuple[float, float], point2: Tuple[float, float]) -> float:
    """
    Great-circle distance between two (latitude, longitude) points in kilometers.

        a = sin²(Δlat/2) + cos(lat1)·cos(lat2)·sin²(Δlng/2)
        d = 2R·atan2(√a, √(1−a))
    """
    lat1, lng1 = point1
    lat2, lng2 = point2

    lat1, lng1, lat2, lng2 = map(radians, [lat1, lng1, lat2, lng2])

    dlat = lat2 - lat1
    dlng = lng2 - lng1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlng / 2) ** 2
    # Float error can push a a hair past 1 for antipodal points
    a = min(1.0, max(0.0, a))
    return 2 * EARTH_RADIUS_KM * atan2(sqrt(a), sqrt(1 - a))


def estimate_eta_minutes(distance_km: float) -> int:
    """
    Fixed heuristic ETA, not a routed one: ceil(distance_km * 2) minutes,
    i.e. a 30 km/h average.
    """
    if distance_km <= 0:
        return 0
    return int(ceil(distance_km * settings.ETA_MINUTES_PER_KM))
