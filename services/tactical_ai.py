"""
Gemini-backed tactical copy: cover analysis, missions, commentary and
leaderboard analysis.

Everything returned from the model is treated as untrusted. Responses are
validated against the pydantic models before they reach callers, and any
failure (no API key, HTTP error, timeout, malformed JSON, schema mismatch)
degrades to a static fallback. Gameplay never waits on or breaks because of
this module.
"""
import json
import logging
import time
from typing import Any, Dict, List, Optional, Sequence

import requests

from models import (
    Commentary,
    CommentaryType,
    CoverAnalysis,
    CoverRating,
    GeoPoint,
    LeaderboardAnalysis,
    LeaderboardEntry,
    Mission,
    MissionObjective,
    MissionType,
    ZoneSummary,
)


logger = logging.getLogger(__name__)

MISSION_TTL_MS = 10 * 60 * 1000
MAX_CONTEXT_ZONES = 8

_RECOVERABLE = (requests.RequestException, ValueError, KeyError, IndexError, TypeError)


class GeminiClient:
    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.0-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def generate_text(self, prompt: str) -> str:
        url = f"{self.base_url}/models/{self.model}:generateContent"
        response = self.session.post(
            url,
            params={"key": self.api_key},
            json={"contents": [{"parts": [{"text": prompt}]}]},
            timeout=self.timeout,
        )
        response.raise_for_status()
        payload = response.json()
        return payload["candidates"][0]["content"]["parts"][0]["text"]

    def generate_json(self, prompt: str) -> Dict[str, Any]:
        return extract_json_object(self.generate_text(prompt))


def build_client(settings) -> Optional[GeminiClient]:
    if not settings.gemini_api_key:
        return None
    return GeminiClient(
        api_key=settings.gemini_api_key,
        model=settings.gemini_model,
        base_url=settings.gemini_base_url,
        timeout=settings.gemini_timeout_seconds,
    )


def extract_json_object(text: str) -> Dict[str, Any]:
    """First JSON object embedded in ``text`` (models like to wrap it in markdown)."""
    start = text.find("{")
    if start < 0:
        raise ValueError("no JSON object in model response")
    value, _ = json.JSONDecoder().raw_decode(text[start:])
    if not isinstance(value, dict):
        raise ValueError("model response is not a JSON object")
    return value


def _now_ms() -> float:
    return time.time() * 1000.0


def _zone_context(zones: Sequence[ZoneSummary]) -> str:
    return json.dumps([z.model_dump(mode="json") for z in zones[:MAX_CONTEXT_ZONES]])


# -- cover analysis -----------------------------------------------------------

def fallback_cover() -> CoverAnalysis:
    return CoverAnalysis(
        cover_rating=CoverRating.UNKNOWN,
        analysis="Scan failed",
        tactical_advice="Proceed with caution",
    )


def parse_cover(data: Dict[str, Any]) -> CoverAnalysis:
    rating = str(data.get("cover_rating", "")).strip().lower()
    if rating not in {r.value for r in CoverRating}:
        logger.warning("COVER_RATING_REJECTED value=%r", data.get("cover_rating"))
        rating = CoverRating.UNKNOWN.value
    return CoverAnalysis(
        cover_rating=rating,
        analysis=data["analysis"],
        tactical_advice=data["tactical_advice"],
    )


def analyze_cover(client: Optional[GeminiClient], point: GeoPoint) -> CoverAnalysis:
    if client is None:
        return fallback_cover()
    prompt = f"""You are a tactical AI assistant in an area control map game.

Coordinates: ({point.lat:.5f}, {point.lng:.5f})

Classify the terrain cover of this spot as high (safe), medium or low (exposed)
and give one tactical suggestion for capturing nearby zones.

Respond ONLY in JSON:
{{"cover_rating": "high|medium|low", "analysis": "one line", "tactical_advice": "one line"}}"""
    try:
        return parse_cover(client.generate_json(prompt))
    except _RECOVERABLE as exc:
        logger.warning("COVER_FALLBACK lat=%.5f lng=%.5f error=%s", point.lat, point.lng, exc)
        return fallback_cover()


# -- missions -----------------------------------------------------------------

def fallback_missions(now: Optional[float] = None) -> List[Mission]:
    now = _now_ms() if now is None else now
    return [
        Mission(
            id="fallback-1",
            title="Territory Expansion",
            description="Capture nearby neutral zones.",
            type=MissionType.CAPTURE,
            objectives=[MissionObjective(description="Capture zones", target=2)],
            reward=20,
            expires_at=now + MISSION_TTL_MS,
        )
    ]


def parse_missions(data: Dict[str, Any], now: float) -> List[Mission]:
    raw = data["missions"]
    if not isinstance(raw, list) or not raw:
        raise ValueError("missions must be a non-empty list")
    missions = []
    for index, item in enumerate(raw, start=1):
        item = dict(item)
        item.setdefault("id", f"mission-{index}")
        item.setdefault("expires_at", now + MISSION_TTL_MS)
        missions.append(Mission.model_validate(item))
    return missions


def generate_missions(
    client: Optional[GeminiClient],
    position: GeoPoint,
    nearby_zones: Sequence[ZoneSummary],
    fallback: Optional[List[Mission]] = None,
    now: Optional[float] = None,
) -> List[Mission]:
    now = _now_ms() if now is None else now
    if client is None:
        return fallback if fallback is not None else fallback_missions(now)

    neutral = sum(1 for z in nearby_zones if z.owner is None)
    claimed = len(nearby_zones) - neutral
    prompt = f"""You are a tactical AI mission generator for a GPS territory control game.

The player is at ({position.lat:.5f}, {position.lng:.5f}).
Nearby zones: {neutral} neutral, {claimed} claimed.
Zone details: {_zone_context(nearby_zones)}

Generate 2 missions based on the surroundings. Respond ONLY in JSON:
{{"missions": [{{"id": "mission-1", "title": "short title", "description": "1-2 sentences",
"type": "capture|strategic|exploration|defense",
"objectives": [{{"description": "objective", "target": 2, "current": 0, "completed": false}}],
"reward": 20, "completed": false}}]}}"""
    try:
        return parse_missions(client.generate_json(prompt), now)
    except _RECOVERABLE as exc:
        logger.warning("MISSION_FALLBACK error=%s", exc)
        return fallback if fallback is not None else fallback_missions(now)


# -- commentary ---------------------------------------------------------------

def fallback_commentary() -> Commentary:
    return Commentary(message="Area scanned. Continue mission.", type=CommentaryType.INFO)


def generate_commentary(
    client: Optional[GeminiClient],
    position: GeoPoint,
    current_zone: Optional[ZoneSummary],
    nearby_zones: Sequence[ZoneSummary],
    fallback: Optional[Commentary] = None,
) -> Commentary:
    if client is None:
        return fallback or fallback_commentary()

    current_owner = current_zone.owner if current_zone else None
    enemy = sum(1 for z in nearby_zones if z.owner and z.owner != current_owner)
    neutral = sum(1 for z in nearby_zones if z.owner is None)
    if current_zone is None:
        zone_line = "None (moving)"
    else:
        zone_line = f"{current_zone.id}, owner {current_zone.owner or 'none'}, HP {current_zone.hp:.0f}"
    prompt = f"""You are a tactical AI assistant in a GPS territory control game.

Player status:
- Position: ({position.lat:.5f}, {position.lng:.5f})
- Current zone: {zone_line}
- Nearby: {enemy} enemy zones, {neutral} neutral zones

Write one tactical comment, at most 15 words. Respond ONLY in JSON:
{{"message": "comment", "type": "info|warning|alert|success"}}"""
    try:
        return Commentary.model_validate(client.generate_json(prompt))
    except _RECOVERABLE as exc:
        logger.warning("COMMENTARY_FALLBACK error=%s", exc)
        return fallback or fallback_commentary()


# -- leaderboard analysis -----------------------------------------------------

def fallback_leaderboard_analysis() -> LeaderboardAnalysis:
    return LeaderboardAnalysis(
        top_strategy="Capture zones consistently and reinforce them regularly",
        personal_advice="Focus on capturing more zones to climb the leaderboard",
        insights=[
            "Top players maintain active zones",
            "Consistency beats sporadic activity",
            "High-cover zones are easier to defend",
        ],
    )


def analyze_leaderboard(
    client: Optional[GeminiClient],
    leaderboard: Sequence[LeaderboardEntry],
    player: LeaderboardEntry,
) -> LeaderboardAnalysis:
    if client is None or not leaderboard:
        return fallback_leaderboard_analysis()

    top = leaderboard[0]
    average = sum(e.total_captures for e in leaderboard) / len(leaderboard)
    activity = json.dumps([
        {"name": e.display_name, "captures": e.total_captures, "last_active": e.last_active}
        for e in leaderboard[:5]
    ])
    prompt = f"""You are a competitive strategy AI for a GPS territory control game.

- Top player: {top.display_name} with {top.total_captures} captures
- Average captures: {round(average)}
- Current player: rank #{player.rank}, {player.total_captures} captures
- Gap to #1: {top.total_captures - player.total_captures} captures
Player activity: {activity}

Respond ONLY in JSON:
{{"top_strategy": "one sentence", "personal_advice": "one sentence", "insights": ["one", "two", "three"]}}"""
    try:
        return LeaderboardAnalysis.model_validate(client.generate_json(prompt))
    except _RECOVERABLE as exc:
        logger.warning("LEADERBOARD_FALLBACK player=%s error=%s", player.player_id, exc)
        return fallback_leaderboard_analysis()
