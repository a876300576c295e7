import asyncio
import logging
import time
from contextlib import asynccontextmanager, suppress
from pathlib import Path
from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from config import settings
from models import (
    Commentary,
    CoverAnalysis,
    GeoPoint,
    LeaderboardEntry,
    Mission,
    PlayerState,
    PositionSample,
    PositionUpdate,
    Zone,
    ZoneEvent,
)
from services.engine import InvalidPlayerError, UnknownPlayerError, ZoneEngine
from services.event_handler import EventLog
from services.registry import ZoneRegistry
from services.tactical_ai import analyze_leaderboard, build_client, generate_commentary, generate_missions
from utils.data_loader import load_zones, save_zones
from utils.tiles import InvalidZoneIdError, parse_zone_id


logging.basicConfig(level=settings.log_level, format="%(asctime)s %(name)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


def now_ms() -> float:
    return time.time() * 1000.0


# In-memory game state for this process
registry = ZoneRegistry(tile_size_meters=settings.tile_size_meters, max_hp=settings.max_hp)
event_log = EventLog(capture_reward=settings.capture_reward)
engine = ZoneEngine(registry, settings, event_sink=event_log)
ai_client = build_client(settings)

if settings.zone_snapshot_path and Path(settings.zone_snapshot_path).exists():
    seeded = registry.merge(load_zones(settings.zone_snapshot_path))
    logger.info("SNAPSHOT_LOADED path=%s zones=%d", settings.zone_snapshot_path, seeded)


def _tick_once() -> None:
    try:
        engine.tick(now_ms())
    except Exception:
        logger.exception("TICK_FAILED")


async def _tick_forever() -> None:
    interval = settings.decay_interval_ms / 1000.0
    while True:
        await asyncio.sleep(interval)
        await asyncio.to_thread(_tick_once)


@asynccontextmanager
async def lifespan(_: FastAPI):
    task = asyncio.create_task(_tick_forever())
    try:
        yield
    finally:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        if settings.zone_snapshot_path:
            save_zones(registry.snapshot(), settings.zone_snapshot_path)
            logger.info("SNAPSHOT_SAVED path=%s zones=%d", settings.zone_snapshot_path, len(registry))


app = FastAPI(title="Territory Control", lifespan=lifespan)


@app.exception_handler(InvalidPlayerError)
@app.exception_handler(InvalidZoneIdError)
async def invalid_input_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(UnknownPlayerError)
async def unknown_player_handler(request: Request, exc: UnknownPlayerError):
    return JSONResponse(status_code=404, content={"detail": f"Player {exc.args[0]} not found"})


def _player_state(player_id: str) -> PlayerState:
    return PlayerState(session=engine.session(player_id), current_zone=engine.current_zone(player_id))


@app.get("/health")
def health() -> Dict[str, Any]:
    return {"status": "ok", "zones": len(registry), "players": len(engine.sessions)}


@app.post("/players/{player_id}/position")
def update_position(player_id: str, update: PositionUpdate) -> PlayerState:
    engine.join(player_id, update.display_name)
    sample = PositionSample(
        lat=update.lat,
        lng=update.lng,
        accuracy=update.accuracy,
        timestamp=update.timestamp if update.timestamp is not None else now_ms(),
    )
    engine.update_position(player_id, sample)
    return _player_state(player_id)


@app.get("/players/{player_id}")
def get_player(player_id: str) -> PlayerState:
    return _player_state(player_id)


@app.delete("/players/{player_id}")
def leave(player_id: str) -> Dict[str, Any]:
    engine.leave(player_id)
    return {"success": True, "player_id": player_id}


@app.get("/zones")
def get_zones() -> List[Zone]:
    return registry.snapshot()


@app.get("/zones/near")
def get_zones_near(
    lat: float = Query(..., ge=-90.0, le=90.0),
    lng: float = Query(..., ge=-180.0, le=180.0),
    count: int = Query(10, ge=1, le=500),
) -> List[Zone]:
    return registry.zones_near(GeoPoint(lat=lat, lng=lng), count)


@app.get("/zones/{zone_id}")
def get_zone(zone_id: str) -> Zone:
    parse_zone_id(zone_id)
    zone = registry.get(zone_id)
    if zone is None:
        raise HTTPException(status_code=404, detail=f"Zone {zone_id} not found")
    return zone


@app.post("/zones/{zone_id}/cover-analysis")
def cover_analysis(zone_id: str) -> CoverAnalysis:
    analysis = engine.refresh_cover(zone_id, ai_client)
    if analysis is None:
        raise HTTPException(status_code=404, detail=f"Zone {zone_id} not found")
    return analysis


@app.post("/players/{player_id}/missions")
def missions(player_id: str) -> List[Mission]:
    session = engine.session(player_id)
    if session.last_position is None:
        raise HTTPException(status_code=400, detail="No position reported yet")
    return generate_missions(ai_client, session.last_position, engine.nearby_summaries(player_id, 8))


@app.post("/players/{player_id}/commentary")
def commentary(player_id: str) -> Commentary:
    session = engine.session(player_id)
    if session.last_position is None:
        raise HTTPException(status_code=400, detail="No position reported yet")
    current = engine.current_zone(player_id)
    return generate_commentary(
        ai_client,
        session.last_position,
        current.summary() if current is not None else None,
        engine.nearby_summaries(player_id, 8),
    )


@app.get("/leaderboard")
def leaderboard(limit: int = Query(10, ge=1, le=100)) -> List[LeaderboardEntry]:
    return event_log.leaderboard(limit)


@app.post("/players/{player_id}/leaderboard-analysis")
def leaderboard_analysis(player_id: str) -> Dict[str, Any]:
    session = engine.session(player_id)
    board = event_log.leaderboard(20)
    me = next((e for e in board if e.player_id == player_id), None)
    if me is None:
        me = LeaderboardEntry(
            player_id=player_id,
            display_name=session.display_name,
            total_captures=0,
            score=0,
            last_active=session.last_seen or 0.0,
            rank=len(board) + 1,
        )
    return {
        "analysis": analyze_leaderboard(ai_client, board, me),
        "leaderboard": board[:10],
        "your_rank": me.rank,
        "your_captures": me.total_captures,
    }


@app.get("/stats")
def stats(days: int = Query(7, ge=1, le=365)) -> Dict[str, Any]:
    return event_log.activity_stats(now_ms(), days=days)


@app.get("/players/{player_id}/history")
def history(player_id: str, days: int = Query(7, ge=1, le=365)) -> List[ZoneEvent]:
    return event_log.history(player_id, now_ms(), days=days)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
