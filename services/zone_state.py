from typing import Optional
import logging

from models import Zone


logger = logging.getLogger(__name__)


MAX_HP = 100.0
CAPTURE_DURATION_MS = 3000
CAPTURE_REWARD = 10
REINFORCE_INTERVAL_MS = 2000
REINFORCE_AMOUNT = 5.0
DECAY_INTERVAL_MS = 10000
DEFAULT_DECAY_RATE_PER_MINUTE = 2.0

_MS_PER_MINUTE = 60000.0


def capture_progress(started_at: float, now: float, duration_ms: float = CAPTURE_DURATION_MS) -> float:
    elapsed = max(0.0, now - started_at)
    return min(100.0, elapsed / duration_ms * 100.0)


def calculate_decay(zone: Zone, now: float, decay_rate_per_minute: float = DEFAULT_DECAY_RATE_PER_MINUTE) -> float:
    """
    HP a zone holds at ``now`` given no reinforcement since ``last_reinforced``.

    The base is the HP recorded at the last capture/reinforcement, not the
    last decayed value, so evaluating more often never decays faster. The
    result never exceeds the current ``hp``. Neutral zones always report 0.
    """
    if zone.owner is None or zone.captured_at is None:
        return 0.0
    base = zone.hp_at_reinforce if zone.hp_at_reinforce is not None else zone.hp
    minutes_elapsed = max(0.0, now - zone.last_reinforced) / _MS_PER_MINUTE
    decayed = max(0.0, min(zone.hp, base - minutes_elapsed * decay_rate_per_minute))
    return round(decayed, 2)


def revert_to_neutral(zone: Zone) -> None:
    # capture_progress and cover_rating are left as they are
    zone.owner = None
    zone.owner_name = None
    zone.hp = 0.0
    zone.hp_at_reinforce = 0.0
    zone.captured_at = None


def apply_decay(zone: Zone, now: float, decay_rate_per_minute: float = DEFAULT_DECAY_RATE_PER_MINUTE) -> bool:
    """Write the decayed HP into ``zone``. Returns True when anything changed."""
    if zone.owner is None:
        return False
    new_hp = calculate_decay(zone, now, decay_rate_per_minute)
    if new_hp == zone.hp:
        return False
    if new_hp <= 0:
        logger.info("DECAY_REVERT zone=%s owner=%s", zone.id, zone.owner)
        revert_to_neutral(zone)
    else:
        zone.hp = new_hp
    return True


def reinforce(
    zone: Zone,
    now: float,
    amount: float = REINFORCE_AMOUNT,
    periods: int = 1,
    decay_rate_per_minute: float = DEFAULT_DECAY_RATE_PER_MINUTE,
) -> bool:
    if zone.owner is None or periods <= 0:
        return False
    # bring hp up to date first so the increment lands on a consistent base
    apply_decay(zone, now, decay_rate_per_minute)
    if zone.owner is None:
        return False
    zone.restore_hp(min(zone.max_hp, zone.hp + amount * periods), now)
    return True


def capture(zone: Zone, player_id: str, display_name: Optional[str], now: float) -> None:
    zone.owner = player_id
    zone.owner_name = display_name
    zone.restore_hp(zone.max_hp, now)
    zone.capture_progress = 100.0
    zone.captured_at = now
