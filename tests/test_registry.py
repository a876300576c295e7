"""Tests for the in-memory zone registry."""
import pytest

from conftest import NEW_DELHI, T0
from models import GeoPoint
from services import zone_state
from services.grid import generate_zones_around
from services.registry import ZoneRegistry, is_point_in_zone, merge_zones
from utils.tiles import point_to_tile, zone_id


@pytest.fixture
def filled(registry):
    registry.expand_around(NEW_DELHI, 2, now=T0)
    return registry


class TestMerge:

    def test_merge_adds_unseen_zones(self, registry):
        added = registry.merge(generate_zones_around(NEW_DELHI, 1, now=T0))
        assert added == 9
        assert len(registry) == 9

    def test_existing_zone_state_survives_regeneration(self, filled):
        home_id = filled.current_zone(NEW_DELHI).id
        zone_state.capture(filled.get(home_id), "p1", "Ace", T0)

        added = filled.merge(generate_zones_around(NEW_DELHI, 2, now=T0 + 1000))

        assert added == 0
        assert len(filled) == 25
        home = filled.get(home_id)
        assert home.owner == "p1"
        assert home.hp == 100

    def test_overlapping_expansion_only_adds_new_ring(self, filled):
        added = filled.expand_around(NEW_DELHI, 3, now=T0)
        assert added == 49 - 25

    def test_merge_zones_does_not_mutate_input(self):
        existing = {z.id: z for z in generate_zones_around(NEW_DELHI, 0, now=T0)}
        merged = merge_zones(existing, generate_zones_around(NEW_DELHI, 1, now=T0))
        assert len(existing) == 1
        assert len(merged) == 9


class TestCurrentZone:

    def test_undiscovered_territory_is_none(self, registry):
        assert registry.current_zone(NEW_DELHI) is None

    def test_lookup_by_tile_id(self, filled):
        tile = point_to_tile(NEW_DELHI)
        zone = filled.current_zone(NEW_DELHI)
        assert zone is not None
        assert zone.id == zone_id(tile.tile_x, tile.tile_y)

    def test_far_point_not_generated(self, filled):
        assert filled.current_zone(GeoPoint(lat=28.7, lng=77.3)) is None


class TestZonesNear:

    def test_returns_requested_count_closest_first(self, filled):
        home = filled.current_zone(NEW_DELHI)
        near = filled.zones_near(home.center, 5)

        assert len(near) == 5
        assert near[0].id == home.id
        distances = [abs(z.center.lat - home.center.lat) + abs(z.center.lng - home.center.lng) for z in near]
        assert distances == sorted(distances)

    def test_count_larger_than_registry(self, filled):
        assert len(filled.zones_near(NEW_DELHI, 100)) == 25

    def test_empty_cases(self, filled):
        assert ZoneRegistry().zones_near(NEW_DELHI, 5) == []
        assert filled.zones_near(NEW_DELHI, 0) == []


class TestPointInZone:

    def test_boundary_is_inside(self, filled):
        zone = filled.current_zone(NEW_DELHI)
        b = zone.bounds
        assert is_point_in_zone(GeoPoint(lat=b.north, lng=b.east), zone)
        assert is_point_in_zone(GeoPoint(lat=b.south, lng=b.west), zone)
        assert is_point_in_zone(zone.center, zone)

    def test_outside(self, filled):
        zone = filled.current_zone(NEW_DELHI)
        b = zone.bounds
        assert not is_point_in_zone(GeoPoint(lat=b.north + 1e-6, lng=zone.center.lng), zone)
        assert not is_point_in_zone(GeoPoint(lat=zone.center.lat, lng=b.west - 1e-6), zone)


class TestQueries:

    def test_owned_zones(self, filled):
        home = filled.current_zone(NEW_DELHI)
        zone_state.capture(home, "p1", "Ace", T0)
        assert [z.id for z in filled.owned_zones()] == [home.id]
        assert filled.owned_zones("p2") == []

    def test_snapshot_is_detached(self, filled):
        home = filled.current_zone(NEW_DELHI)
        copy = next(z for z in filled.snapshot() if z.id == home.id)
        copy.owner = "intruder"
        assert filled.get(home.id).owner is None

    def test_iteration_and_membership(self, filled):
        ids = [z.id for z in filled]
        assert len(ids) == 25
        assert ids[0] in filled
        assert "zone_0_0" not in filled
