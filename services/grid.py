import time
from typing import List, Optional

from models import GeoPoint, TileCoordinate, Zone
from services.zone_state import MAX_HP
from utils.tiles import TILE_SIZE_METERS, point_to_tile, tile_bounds, tile_to_point, zone_id


def generate_zones_around(
    center: GeoPoint,
    radius: int,
    tile_size_meters: float = TILE_SIZE_METERS,
    now: Optional[float] = None,
    max_hp: float = MAX_HP,
) -> List[Zone]:
    """
    Neutral zones covering the (2*radius+1)^2 tiles around the tile that
    contains ``center``. Every zone's geometry is derived from ``center.lat``,
    which is stored on the zone as ``reference_lat``.
    """
    if radius < 0:
        raise ValueError(f"radius must be >= 0, got {radius}")
    if now is None:
        now = time.time() * 1000.0

    center_tile = point_to_tile(center, tile_size_meters)
    zones: List[Zone] = []
    for dx in range(-radius, radius + 1):
        for dy in range(-radius, radius + 1):
            tile = TileCoordinate(tile_x=center_tile.tile_x + dx, tile_y=center_tile.tile_y + dy)
            zones.append(
                Zone(
                    id=zone_id(tile.tile_x, tile.tile_y),
                    tile_x=tile.tile_x,
                    tile_y=tile.tile_y,
                    center=tile_to_point(tile, center.lat, tile_size_meters),
                    bounds=tile_bounds(tile, center.lat, tile_size_meters),
                    reference_lat=center.lat,
                    max_hp=max_hp,
                    last_reinforced=now,
                )
            )
    return zones
