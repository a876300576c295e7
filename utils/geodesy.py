import math

from models import GeoPoint


EARTH_RADIUS_M = 6371000.0  # spherical approximation of WGS84


def to_radians(deg: float) -> float:
    return deg * math.pi / 180.0


def to_degrees(rad: float) -> float:
    return rad * 180.0 / math.pi


def meters_per_degree_lat() -> float:
    return 2 * math.pi * EARTH_RADIUS_M / 360.0


def meters_per_degree_lng(lat: float) -> float:
    """Longitude degrees shrink toward the poles by cos(latitude)."""
    return meters_per_degree_lat() * math.cos(to_radians(lat))


def haversine_distance_meters(a: GeoPoint, b: GeoPoint) -> float:
    phi1, phi2 = to_radians(a.lat), to_radians(b.lat)
    d_phi = to_radians(b.lat - a.lat)
    d_lambda = to_radians(b.lng - a.lng)
    h = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
