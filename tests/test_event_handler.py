from unittest.mock import MagicMock

import pytest

from conftest import NEW_DELHI, T0
from models import CoverRating, ZoneEvent, ZoneEventKind
from services.event_handler import EventLog, dispatch_events

DAY = 24 * 60 * 60 * 1000


def event(player_id, t, kind=ZoneEventKind.CAPTURED, name=None, zone="zone_1_1"):
    return ZoneEvent(
        kind=kind,
        zone_id=zone,
        player_id=player_id,
        display_name=name or player_id.upper(),
        position=NEW_DELHI,
        cover_rating=CoverRating.UNKNOWN,
        timestamp=t,
    )


@pytest.fixture
def log():
    log = EventLog(capture_reward=10)
    for e in [
        event("alice", T0 + 1),
        event("bob", T0 + 2),
        event("alice", T0 + 3),
        event("carol", T0 + 4),
        event("bob", T0 + 5),
        event("dave", T0 + 6, kind=ZoneEventKind.REINFORCED),
    ]:
        log.record(e)
    return log


class TestDispatch:

    def test_no_sink(self):
        assert dispatch_events(None, [event("alice", T0)]) == 0

    def test_failures_are_skipped(self, caplog):
        sink = MagicMock()
        sink.record.side_effect = [RuntimeError("down"), None]
        accepted = dispatch_events(sink, [event("alice", T0), event("bob", T0 + 1)])
        assert accepted == 1
        assert sink.record.call_count == 2
        assert "EVENT_SINK_FAILED" in caplog.text


class TestLeaderboard:

    def test_empty(self):
        assert EventLog().leaderboard() == []

    def test_ranked_by_captures_then_recency(self, log):
        board = log.leaderboard()
        assert [e.player_id for e in board] == ["bob", "alice", "carol", "dave"]
        assert [e.rank for e in board] == [1, 2, 3, 4]
        assert board[0].total_captures == 2
        assert board[0].score == 20
        assert board[0].last_active == T0 + 5
        assert board[-1].total_captures == 0

    def test_limit(self, log):
        assert len(log.leaderboard(2)) == 2

    def test_latest_display_name_wins(self):
        log = EventLog()
        log.record(event("alice", T0, name="Old"))
        log.record(event("alice", T0 + 10, name="New"))
        assert log.leaderboard()[0].display_name == "New"


class TestHistory:

    def test_captures_newest_first(self, log):
        history = log.history("alice", T0 + 10)
        assert [e.timestamp for e in history] == [T0 + 3, T0 + 1]

    def test_excludes_reinforcements(self, log):
        assert log.history("dave", T0 + 10) == []

    def test_window(self, log):
        assert log.history("alice", T0 + 8 * DAY) == []
        assert len(log.history("alice", T0 + 8 * DAY, days=30)) == 2


def test_activity_stats(log):
    stats = log.activity_stats(T0 + 10)
    assert stats["total_captures"] == 5
    assert stats["unique_players"] == 3
    assert stats["player_activity"] == {"alice": 2, "bob": 2, "carol": 1}
