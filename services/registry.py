import threading
from typing import Dict, Iterable, Iterator, List, Optional

import numpy as np

from models import GeoPoint, Zone
from services.grid import generate_zones_around
from services.zone_state import MAX_HP
from utils.tiles import TILE_SIZE_METERS, point_to_tile, zone_id


def merge_zones(existing: Dict[str, Zone], new_zones: Iterable[Zone]) -> Dict[str, Zone]:
    """
    Return ``existing`` extended with every zone whose id it does not hold yet.
    Tracked zones win over freshly generated neutral placeholders.
    """
    merged = dict(existing)
    for zone in new_zones:
        if zone.id not in merged:
            merged[zone.id] = zone
    return merged


def is_point_in_zone(point: GeoPoint, zone: Zone) -> bool:
    bounds = zone.bounds
    return bounds.south <= point.lat <= bounds.north and bounds.west <= point.lng <= bounds.east


class ZoneRegistry:
    """
    All zones known to the process, keyed by zone id.

    Zones are created lazily by ``merge``/``expand_around`` and never removed.
    Callers doing read-modify-write work on zones hold ``lock`` for the whole
    update.
    """

    def __init__(self, tile_size_meters: float = TILE_SIZE_METERS, max_hp: float = MAX_HP):
        self.tile_size_meters = tile_size_meters
        self.max_hp = max_hp
        self.lock = threading.RLock()
        self._zones: Dict[str, Zone] = {}

    def __len__(self) -> int:
        return len(self._zones)

    def __contains__(self, zone_id: str) -> bool:
        return zone_id in self._zones

    def __iter__(self) -> Iterator[Zone]:
        with self.lock:
            return iter(list(self._zones.values()))

    def get(self, zone_id: str) -> Optional[Zone]:
        return self._zones.get(zone_id)

    def merge(self, new_zones: Iterable[Zone]) -> int:
        """Insert unseen zones. Returns how many were added."""
        with self.lock:
            before = len(self._zones)
            self._zones = merge_zones(self._zones, new_zones)
            return len(self._zones) - before

    def expand_around(self, position: GeoPoint, radius: int, now: Optional[float] = None) -> int:
        zones = generate_zones_around(position, radius, self.tile_size_meters, now=now, max_hp=self.max_hp)
        return self.merge(zones)

    def current_zone(self, position: GeoPoint) -> Optional[Zone]:
        """Zone whose tile contains ``position``, or None for undiscovered territory."""
        tile = point_to_tile(position, self.tile_size_meters)
        return self._zones.get(zone_id(tile.tile_x, tile.tile_y))

    def zones_near(self, position: GeoPoint, count: int = 10) -> List[Zone]:
        """
        The ``count`` zones whose centers are closest to ``position`` by
        Manhattan distance in degrees. Good enough at a few hundred metres;
        use ``haversine_distance_meters`` when real distances matter.
        """
        if count <= 0:
            return []
        with self.lock:
            zones = list(self._zones.values())
        if not zones:
            return []
        centers = np.array([[z.center.lat, z.center.lng] for z in zones])
        distances = np.abs(centers[:, 0] - position.lat) + np.abs(centers[:, 1] - position.lng)
        order = np.argsort(distances, kind="stable")[:count]
        return [zones[i] for i in order]

    def owned_zones(self, owner: Optional[str] = None) -> List[Zone]:
        with self.lock:
            return [
                z for z in self._zones.values()
                if z.owner is not None and (owner is None or z.owner == owner)
            ]

    def snapshot(self) -> List[Zone]:
        with self.lock:
            return [z.model_copy(deep=True) for z in self._zones.values()]
