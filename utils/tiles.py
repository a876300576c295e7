"""
Deterministic mapping between geographic points and 100 m grid tiles.

Latitude is scaled by a constant metres-per-degree. Longitude is scaled by
cos(latitude), so tiles narrow in degrees of longitude toward the poles.
"""
import math
import re

from models import BoundingBox, GeoPoint, TileCoordinate
from utils.geodesy import meters_per_degree_lat, meters_per_degree_lng


TILE_SIZE_METERS = 100.0

ZONE_ID_PATTERN = re.compile(r"zone_(0|-?[1-9]\d*)_(0|-?[1-9]\d*)")


class InvalidZoneIdError(ValueError):
    pass


def point_to_tile(point: GeoPoint, tile_size_meters: float = TILE_SIZE_METERS) -> TileCoordinate:
    # floor, not int(): negative coordinates must not share tile 0
    tile_x = math.floor(point.lng * meters_per_degree_lng(point.lat) / tile_size_meters)
    tile_y = math.floor(point.lat * meters_per_degree_lat() / tile_size_meters)
    return TileCoordinate(tile_x=tile_x, tile_y=tile_y)


def tile_to_point(
    tile: TileCoordinate,
    reference_lat: float,
    tile_size_meters: float = TILE_SIZE_METERS,
) -> GeoPoint:
    """
    Center of a tile. ``reference_lat`` must match the latitude the tile was
    indexed at, otherwise the longitude scale drifts.
    """
    lat = (tile.tile_y + 0.5) * tile_size_meters / meters_per_degree_lat()
    lng = (tile.tile_x + 0.5) * tile_size_meters / meters_per_degree_lng(reference_lat)
    return GeoPoint(lat=lat, lng=lng)


def tile_bounds(
    tile: TileCoordinate,
    reference_lat: float,
    tile_size_meters: float = TILE_SIZE_METERS,
) -> BoundingBox:
    m_lat = meters_per_degree_lat()
    m_lng = meters_per_degree_lng(reference_lat)
    return BoundingBox(
        north=(tile.tile_y + 1) * tile_size_meters / m_lat,
        south=tile.tile_y * tile_size_meters / m_lat,
        east=(tile.tile_x + 1) * tile_size_meters / m_lng,
        west=tile.tile_x * tile_size_meters / m_lng,
    )


def zone_id(tile_x: int, tile_y: int) -> str:
    return f"zone_{tile_x}_{tile_y}"


def parse_zone_id(value: str) -> TileCoordinate:
    match = ZONE_ID_PATTERN.fullmatch(value or "")
    if match is None:
        raise InvalidZoneIdError(f"Malformed zone id: {value!r}")
    return TileCoordinate(tile_x=int(match.group(1)), tile_y=int(match.group(2)))
