import math

from venue_presence.core.presence_config import MOCK_STRICT_RADIUS_FACTOR

EARTH_RADIUS_METERS = 6371000


def haversine_m(lat1, lng1, lat2, lng2):
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lng2 - lng1)

    a = (
        math.sin(dphi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    )
    # rounding can push a just outside [0, 1] near antipodes
    a = min(1.0, max(0.0, a))
    return 2 * EARTH_RADIUS_METERS * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def effective_radius(location_radius: float, k_factor: float, mock_detected: bool = False) -> float:
    radius = location_radius * k_factor
    if mock_detected:
        radius *= MOCK_STRICT_RADIUS_FACTOR
    return radius
