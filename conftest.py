import pytest

from config import Settings
from models import GeoPoint, Zone
from services.engine import ZoneEngine
from services.event_handler import EventLog
from services.grid import generate_zones_around
from services.registry import ZoneRegistry


NEW_DELHI = GeoPoint(lat=28.6139, lng=77.2090)
T0 = 1_700_000_000_000.0  # fixed ms epoch for deterministic clocks


@pytest.fixture
def game_settings():
    return Settings(grid_radius=1, gemini_api_key=None, zone_snapshot_path=None)


@pytest.fixture
def registry(game_settings):
    return ZoneRegistry(tile_size_meters=game_settings.tile_size_meters, max_hp=game_settings.max_hp)


@pytest.fixture
def event_log(game_settings):
    return EventLog(capture_reward=game_settings.capture_reward)


@pytest.fixture
def engine(registry, game_settings, event_log):
    return ZoneEngine(registry, game_settings, event_sink=event_log)


@pytest.fixture
def make_zone():
    """Factory for a single zone at the New Delhi tile with field overrides."""
    def _make(**overrides):
        data = generate_zones_around(NEW_DELHI, 0, now=T0)[0].model_dump()
        data["hp_at_reinforce"] = None
        data.update(overrides)
        return Zone.model_validate(data)
    return _make
