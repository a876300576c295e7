import time
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

import main
from conftest import NEW_DELHI
from utils.data_loader import load_zones
from utils.tiles import point_to_tile, zone_id


@pytest.fixture
def client(monkeypatch, registry, engine, event_log):
    monkeypatch.setattr(main, "registry", registry)
    monkeypatch.setattr(main, "engine", engine)
    monkeypatch.setattr(main, "event_log", event_log)
    monkeypatch.setattr(main, "ai_client", None)
    return TestClient(main.app)


@pytest.fixture
def now():
    return time.time() * 1000.0


def report(client, player_id, t, point=NEW_DELHI, name="Ace"):
    return client.post(
        f"/players/{player_id}/position",
        json={"display_name": name, "lat": point.lat, "lng": point.lng, "accuracy": 8.0, "timestamp": t},
    )


def home_id():
    tile = point_to_tile(NEW_DELHI)
    return zone_id(tile.tile_x, tile.tile_y)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "zones": 0, "players": 0}


class TestPlayers:

    def test_first_position_joins_and_expands(self, client, now):
        response = report(client, "p1", now)
        assert response.status_code == 200
        body = response.json()
        assert body["session"]["player_id"] == "p1"
        assert body["session"]["capture_progress"] == 0.0
        assert body["current_zone"]["id"] == home_id()
        assert len(client.get("/zones").json()) == 9

    def test_capture_through_position_reports(self, client, now):
        report(client, "p1", now)
        body = report(client, "p1", now + 3000).json()

        assert body["current_zone"]["owner"] == "p1"
        assert body["session"]["score"] == 10
        assert client.get("/players/p1/history").json()[0]["zone_id"] == home_id()
        leaderboard = client.get("/leaderboard").json()
        assert leaderboard[0]["player_id"] == "p1"
        assert leaderboard[0]["total_captures"] == 1

    def test_invalid_player_id(self, client, now):
        assert report(client, "bad!id", now).status_code == 400

    def test_display_name_sanitized(self, client, now):
        body = report(client, "p1", now, name="<i>Ace</i>").json()
        assert body["session"]["display_name"] == "Ace"
        assert report(client, "p2", now, name="<b></b>").status_code == 400

    def test_out_of_range_position(self, client, now):
        response = client.post("/players/p1/position", json={"display_name": "Ace", "lat": 91, "lng": 0})
        assert response.status_code == 422

    def test_unknown_player(self, client):
        assert client.get("/players/ghost").status_code == 404
        assert client.delete("/players/ghost").status_code == 404

    def test_leave(self, client, now):
        report(client, "p1", now)
        assert client.delete("/players/p1").json() == {"success": True, "player_id": "p1"}
        assert client.get("/players/p1").status_code == 404


class TestZones:

    def test_get_zone(self, client, now):
        report(client, "p1", now)
        response = client.get(f"/zones/{home_id()}")
        assert response.status_code == 200
        assert response.json()["owner"] is None

    def test_malformed_and_missing_zone(self, client):
        assert client.get("/zones/zone_abc").status_code == 400
        assert client.get("/zones/zone_1_1").status_code == 404

    def test_zones_near(self, client, now):
        report(client, "p1", now)
        response = client.get("/zones/near", params={"lat": NEW_DELHI.lat, "lng": NEW_DELHI.lng, "count": 3})
        zones = response.json()
        assert len(zones) == 3
        assert zones[0]["id"] == home_id()

    def test_cover_analysis_without_ai(self, client, now):
        report(client, "p1", now)
        response = client.post(f"/zones/{home_id()}/cover-analysis")
        assert response.status_code == 200
        assert response.json()["cover_rating"] == "unknown"
        assert client.post("/zones/zone_1_1/cover-analysis").status_code == 404
        assert client.post("/zones/zone_01_1/cover-analysis").status_code == 400


class TestTacticalEndpoints:

    def test_need_position(self, client, engine):
        engine.join("p1", "Ace")
        assert client.post("/players/p1/missions").status_code == 400
        assert client.post("/players/p1/commentary").status_code == 400

    def test_fallbacks(self, client, now):
        report(client, "p1", now)
        missions = client.post("/players/p1/missions").json()
        assert missions[0]["id"] == "fallback-1"
        commentary = client.post("/players/p1/commentary").json()
        assert commentary == {"message": "Area scanned. Continue mission.", "type": "info"}

    def test_leaderboard_analysis_for_unranked_player(self, client, now):
        report(client, "p1", now)
        report(client, "p1", now + 3000)
        report(client, "p2", now, name="Blaze")

        body = client.post("/players/p2/leaderboard-analysis").json()
        assert body["your_rank"] == 2
        assert body["your_captures"] == 0
        assert [e["player_id"] for e in body["leaderboard"]] == ["p1"]
        assert len(body["analysis"]["insights"]) == 3

    def test_stats(self, client, now):
        report(client, "p1", now)
        report(client, "p1", now + 3000)
        stats = client.get("/stats").json()
        assert stats == {"total_captures": 1, "unique_players": 1, "player_activity": {"p1": 1}}


class TestBackground:

    def test_failed_tick_is_logged_not_raised(self, monkeypatch, caplog):
        engine = MagicMock()
        engine.tick.side_effect = RuntimeError("boom")
        monkeypatch.setattr(main, "engine", engine)

        main._tick_once()

        engine.tick.assert_called_once()
        assert "TICK_FAILED" in caplog.text

    def test_snapshot_saved_on_shutdown(self, client, monkeypatch, game_settings, tmp_path, now):
        path = tmp_path / "zones.json"
        monkeypatch.setattr(main, "settings", game_settings.model_copy(update={"zone_snapshot_path": str(path)}))
        report(client, "p1", now)

        with TestClient(main.app):
            pass

        assert len(load_zones(path)) == 9
