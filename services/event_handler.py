from typing import Dict, Iterable, List, Optional, Protocol
import logging
import threading

import pandas as pd

from models import LeaderboardEntry, ZoneEvent, ZoneEventKind
from services.zone_state import CAPTURE_REWARD


logger = logging.getLogger(__name__)

_MS_PER_DAY = 24 * 60 * 60 * 1000


class EventSink(Protocol):
    def record(self, event: ZoneEvent) -> None:
        ...


def dispatch_events(sink: Optional[EventSink], events: Iterable[ZoneEvent]) -> int:
    """
    Hand zone events to the persistence collaborator, fire-and-forget.

    In-memory zone state is already updated when this runs; a failing sink is
    logged and skipped so gameplay carries on. Returns how many were accepted.
    """
    if sink is None:
        return 0
    accepted = 0
    for event in events:
        try:
            sink.record(event)
            accepted += 1
        except Exception:
            logger.exception(
                "EVENT_SINK_FAILED kind=%s zone=%s player=%s", event.kind.value, event.zone_id, event.player_id
            )
    return accepted


class EventLog:
    """In-memory event sink with leaderboard and capture history queries."""

    def __init__(self, capture_reward: int = CAPTURE_REWARD):
        self.capture_reward = capture_reward
        self._events: List[ZoneEvent] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._events)

    def record(self, event: ZoneEvent) -> None:
        with self._lock:
            self._events.append(event)

    def _frame(self) -> pd.DataFrame:
        with self._lock:
            rows = [
                {
                    "kind": e.kind.value,
                    "zone_id": e.zone_id,
                    "player_id": e.player_id,
                    "display_name": e.display_name,
                    "timestamp": e.timestamp,
                }
                for e in self._events
            ]
        return pd.DataFrame(rows, columns=["kind", "zone_id", "player_id", "display_name", "timestamp"])

    def leaderboard(self, limit: int = 10) -> List[LeaderboardEntry]:
        """Players ranked by total captures, most recent activity breaking ties."""
        df = self._frame()
        if df.empty or limit <= 0:
            return []

        df = df.sort_values("timestamp", kind="stable")
        per_player = df.groupby("player_id").agg(
            display_name=("display_name", "last"),
            last_active=("timestamp", "max"),
        )
        captures = df[df["kind"] == ZoneEventKind.CAPTURED.value].groupby("player_id").size()
        per_player["total_captures"] = captures.reindex(per_player.index, fill_value=0)
        per_player = per_player.sort_values(["total_captures", "last_active"], ascending=[False, False])

        entries: List[LeaderboardEntry] = []
        for rank, (player_id, row) in enumerate(per_player.head(limit).iterrows(), start=1):
            total = int(row["total_captures"])
            entries.append(
                LeaderboardEntry(
                    player_id=str(player_id),
                    display_name=str(row["display_name"]),
                    total_captures=total,
                    score=total * self.capture_reward,
                    last_active=float(row["last_active"]),
                    rank=rank,
                )
            )
        return entries

    def history(self, player_id: str, now: float, days: int = 7) -> List[ZoneEvent]:
        """Captures by ``player_id`` in the last ``days`` days, newest first."""
        since = now - days * _MS_PER_DAY
        with self._lock:
            captures = [
                e for e in self._events
                if e.player_id == player_id and e.kind == ZoneEventKind.CAPTURED and e.timestamp >= since
            ]
        return sorted(captures, key=lambda e: e.timestamp, reverse=True)

    def activity_stats(self, now: float, days: int = 7) -> Dict[str, object]:
        df = self._frame()
        since = now - days * _MS_PER_DAY
        recent = df[(df["kind"] == ZoneEventKind.CAPTURED.value) & (df["timestamp"] >= since)]
        per_player = recent.groupby("player_id").size()
        return {
            "total_captures": int(len(recent)),
            "unique_players": int(per_player.shape[0]),
            "player_activity": {str(k): int(v) for k, v in per_player.items()},
        }
