"""
Zone lifecycle engine.

One ``ZoneEngine`` owns the player sessions for a ``ZoneRegistry`` and drives
every zone transition through a single evaluation cycle with a fixed order:

    decay -> reinforcement -> capture

The whole cycle runs under ``registry.lock`` so timers never interleave a
stale read of ``hp``/``owner`` with another write. Position samples are folded
into the same cycle, which makes leaving a zone cancel its capture in the same
locked update that notices the move. Zone events are handed to the event sink
only after the lock is released.
"""
import logging
import re
from typing import Dict, List, Optional

from config import Settings, settings as default_settings
from models import (
    CoverAnalysis,
    CoverRating,
    GeoPoint,
    PlayerSession,
    PositionSample,
    Zone,
    ZoneEvent,
    ZoneEventKind,
    ZoneSummary,
)
from services import zone_state
from services.event_handler import EventSink, dispatch_events
from services.registry import ZoneRegistry
from services.tactical_ai import GeminiClient, analyze_cover
from utils.tiles import parse_zone_id


logger = logging.getLogger(__name__)

PLAYER_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]{1,128}")
MAX_DISPLAY_NAME = 50
_TAG_PATTERN = re.compile(r"<[^>]*>")


class InvalidPlayerError(ValueError):
    pass


class UnknownPlayerError(KeyError):
    pass


def validate_player_id(player_id: str) -> str:
    if not isinstance(player_id, str) or not PLAYER_ID_PATTERN.fullmatch(player_id):
        raise InvalidPlayerError(f"Invalid player id: {player_id!r}")
    return player_id


def sanitize_display_name(display_name: str) -> str:
    if not isinstance(display_name, str):
        raise InvalidPlayerError("Display name must be a string")
    cleaned = _TAG_PATTERN.sub("", display_name).strip()
    if not cleaned or len(cleaned) > MAX_DISPLAY_NAME:
        raise InvalidPlayerError(f"Display name must be 1-{MAX_DISPLAY_NAME} characters")
    return cleaned


class ZoneEngine:
    def __init__(
        self,
        registry: ZoneRegistry,
        settings: Optional[Settings] = None,
        event_sink: Optional[EventSink] = None,
    ):
        self.registry = registry
        self.settings = settings or default_settings
        self.event_sink = event_sink
        self.sessions: Dict[str, PlayerSession] = {}
        self._last_decay_at: Optional[float] = None

    # -- sessions -------------------------------------------------------------

    def join(self, player_id: str, display_name: str) -> PlayerSession:
        player_id = validate_player_id(player_id)
        display_name = sanitize_display_name(display_name)
        with self.registry.lock:
            session = self.sessions.get(player_id)
            if session is None:
                session = PlayerSession(player_id=player_id, display_name=display_name)
                self.sessions[player_id] = session
                logger.info("JOIN player=%s", player_id)
            else:
                session.display_name = display_name
            return session

    def session(self, player_id: str) -> PlayerSession:
        session = self.sessions.get(player_id)
        if session is None:
            raise UnknownPlayerError(player_id)
        return session

    def leave(self, player_id: str) -> None:
        with self.registry.lock:
            session = self.session(player_id)
            self._cancel_capture(session)
            del self.sessions[player_id]
        logger.info("LEAVE player=%s", player_id)

    def current_zone(self, player_id: str) -> Optional[Zone]:
        session = self.session(player_id)
        if session.current_zone_id is None:
            return None
        return self.registry.get(session.current_zone_id)

    def nearby_summaries(self, player_id: str, count: int = 10) -> List[ZoneSummary]:
        session = self.session(player_id)
        if session.last_position is None:
            return []
        return [z.summary() for z in self.registry.zones_near(session.last_position, count)]

    # -- inputs ---------------------------------------------------------------

    def update_position(self, player_id: str, sample: PositionSample) -> PlayerSession:
        """
        Fold a position sample into the session and run one evaluation cycle
        at the sample's timestamp.
        """
        now = sample.timestamp
        point = sample.point
        with self.registry.lock:
            session = self.session(player_id)
            self.registry.expand_around(point, self.settings.grid_radius, now=now)
            zone = self.registry.current_zone(point)
            session.last_position = point
            session.last_seen = now

            new_zone_id = zone.id if zone is not None else None
            if new_zone_id != session.current_zone_id:
                self._cancel_capture(session)
                session.occupancy_anchor = None
                session.current_zone_id = new_zone_id
                if zone is not None:
                    self._enter(session, zone, now)
            events = self._cycle(now)
        dispatch_events(self.event_sink, events)
        return session

    def tick(self, now: float) -> List[ZoneEvent]:
        with self.registry.lock:
            events = self._cycle(now)
        dispatch_events(self.event_sink, events)
        return events

    def decay(self, now: float) -> List[str]:
        """Apply decay to every owned zone. Returns ids of zones that went neutral."""
        reverted = []
        with self.registry.lock:
            for zone in self.registry.owned_zones():
                zone_state.apply_decay(zone, now, self.settings.decay_rate_per_minute)
                if zone.owner is None:
                    reverted.append(zone.id)
            self._last_decay_at = now
        return reverted

    def refresh_cover(self, zone_id: str, client: Optional[GeminiClient]) -> Optional[CoverAnalysis]:
        """
        Ask the tactical collaborator about a zone and store its cover rating.
        A failed analysis leaves the stored rating untouched.
        """
        parse_zone_id(zone_id)
        zone = self.registry.get(zone_id)
        if zone is None:
            return None
        analysis = analyze_cover(client, zone.center)
        if analysis.cover_rating != CoverRating.UNKNOWN:
            with self.registry.lock:
                zone.cover_rating = analysis.cover_rating
        return analysis

    # -- evaluation cycle -----------------------------------------------------

    def _cycle(self, now: float) -> List[ZoneEvent]:
        events: List[ZoneEvent] = []
        if self._last_decay_at is None or now - self._last_decay_at >= self.settings.decay_interval_ms:
            self.decay(now)
        for session in self.sessions.values():
            event = self._reinforce(session, now)
            if event is not None:
                events.append(event)
        for session in self.sessions.values():
            event = self._advance_capture(session, now)
            if event is not None:
                events.append(event)
        return events

    def _enter(self, session: PlayerSession, zone: Zone, now: float) -> None:
        if zone.owner == session.player_id:
            session.occupancy_anchor = now
        else:
            self._start_capture(session, zone, now)

    def _start_capture(self, session: PlayerSession, zone: Zone, now: float) -> None:
        session.capture_started_at = now
        session.capture_target_owner = zone.owner
        session.capture_progress = 0.0
        zone.capture_progress = 0.0

    def _cancel_capture(self, session: PlayerSession) -> None:
        if session.capture_started_at is None:
            return
        zone = self.registry.get(session.current_zone_id) if session.current_zone_id else None
        if zone is not None and zone.owner != session.player_id:
            zone.capture_progress = 0.0
        logger.debug("CAPTURE_CANCELLED player=%s zone=%s", session.player_id, session.current_zone_id)
        session.capture_started_at = None
        session.capture_target_owner = None
        session.capture_progress = None

    def _reinforce(self, session: PlayerSession, now: float) -> Optional[ZoneEvent]:
        zone = self.registry.get(session.current_zone_id) if session.current_zone_id else None
        if zone is None or zone.owner != session.player_id:
            session.occupancy_anchor = None
            return None
        if session.occupancy_anchor is None:
            session.occupancy_anchor = now
            return None

        interval = self.settings.reinforce_interval_ms
        periods = int((now - session.occupancy_anchor) // interval)
        if periods < 1:
            return None
        zone_state.reinforce(
            zone,
            now,
            amount=self.settings.reinforce_amount,
            periods=periods,
            decay_rate_per_minute=self.settings.decay_rate_per_minute,
        )
        session.occupancy_anchor += periods * interval
        if zone.owner != session.player_id:
            # decayed to neutral before the reinforcement landed
            session.occupancy_anchor = None
            return None
        logger.info("REINFORCE zone=%s player=%s hp=%.2f periods=%d", zone.id, session.player_id, zone.hp, periods)
        return self._event(ZoneEventKind.REINFORCED, session, zone, now)

    def _advance_capture(self, session: PlayerSession, now: float) -> Optional[ZoneEvent]:
        zone = self.registry.get(session.current_zone_id) if session.current_zone_id else None
        if zone is None:
            self._cancel_capture(session)
            return None
        if zone.owner == session.player_id:
            self._cancel_capture(session)
            return None
        if session.capture_started_at is None or zone.owner != session.capture_target_owner:
            # zone turned neutral or changed hands while we stood in it
            self._start_capture(session, zone, now)
            return None

        progress = zone_state.capture_progress(session.capture_started_at, now, self.settings.capture_duration_ms)
        session.capture_progress = progress
        zone.capture_progress = progress
        if progress < 100.0:
            return None

        previous_owner = zone.owner
        zone_state.capture(zone, session.player_id, session.display_name, now)
        session.score += self.settings.capture_reward
        session.zones_captured += 1
        session.capture_started_at = None
        session.capture_target_owner = None
        session.capture_progress = None
        session.occupancy_anchor = now
        logger.info(
            "CAPTURE zone=%s player=%s previous_owner=%s score=%d",
            zone.id, session.player_id, previous_owner, session.score,
        )
        return self._event(ZoneEventKind.CAPTURED, session, zone, now)

    def _event(self, kind: ZoneEventKind, session: PlayerSession, zone: Zone, now: float) -> ZoneEvent:
        return ZoneEvent(
            kind=kind,
            zone_id=zone.id,
            player_id=session.player_id,
            display_name=session.display_name,
            position=session.last_position or GeoPoint(lat=zone.center.lat, lng=zone.center.lng),
            cover_rating=zone.cover_rating,
            timestamp=now,
        )
