from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


class CoverRating(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    UNKNOWN = "unknown"


class GeoPoint(BaseModel):
    lat: float = Field(..., ge=-90.0, le=90.0)
    lng: float = Field(..., ge=-180.0, le=180.0)


class TileCoordinate(BaseModel):
    tile_x: int
    tile_y: int


class BoundingBox(BaseModel):
    north: float
    south: float
    east: float
    west: float

    @model_validator(mode="after")
    def _check_extent(self) -> "BoundingBox":
        if self.north <= self.south or self.east <= self.west:
            raise ValueError("bounding box must have north > south and east > west")
        return self


class ZoneSummary(BaseModel):
    id: str
    center: GeoPoint
    owner: Optional[str] = None
    hp: float = 0.0
    cover_rating: CoverRating = CoverRating.UNKNOWN


class Zone(BaseModel):
    id: str
    tile_x: int
    tile_y: int
    center: GeoPoint
    bounds: BoundingBox
    reference_lat: float  # latitude the center/bounds were derived from
    owner: Optional[str] = None
    owner_name: Optional[str] = None
    hp: float = 0.0
    max_hp: float = 100.0
    hp_at_reinforce: Optional[float] = None  # decay anchor, set on capture/reinforce
    capture_progress: float = 0.0  # 0-100
    cover_rating: CoverRating = CoverRating.UNKNOWN
    last_reinforced: float = 0.0  # ms epoch
    captured_at: Optional[float] = None  # ms epoch, None iff neutral

    @model_validator(mode="after")
    def _check_ownership(self) -> "Zone":
        if (self.owner is None) != (self.captured_at is None):
            raise ValueError("owner and captured_at must both be set or both be empty")
        if not 0.0 <= self.hp <= self.max_hp:
            raise ValueError(f"hp {self.hp} outside [0, {self.max_hp}]")
        if self.hp_at_reinforce is None:
            self.hp_at_reinforce = self.hp
        return self

    @property
    def is_neutral(self) -> bool:
        return self.owner is None

    def restore_hp(self, hp: float, now: float) -> None:
        """Set ``hp`` and restart decay from it at ``now``."""
        self.hp = hp
        self.hp_at_reinforce = hp
        self.last_reinforced = now

    def summary(self) -> ZoneSummary:
        return ZoneSummary(
            id=self.id,
            center=self.center,
            owner=self.owner,
            hp=self.hp,
            cover_rating=self.cover_rating,
        )


class PositionSample(BaseModel):
    lat: float = Field(..., ge=-90.0, le=90.0)
    lng: float = Field(..., ge=-180.0, le=180.0)
    accuracy: float = Field(default=0.0, ge=0.0)  # metres
    timestamp: float  # ms epoch

    @property
    def point(self) -> GeoPoint:
        return GeoPoint(lat=self.lat, lng=self.lng)


class ZoneEventKind(str, Enum):
    CAPTURED = "captured"
    REINFORCED = "reinforced"


class ZoneEvent(BaseModel):
    kind: ZoneEventKind
    zone_id: str
    player_id: str
    display_name: str
    position: GeoPoint
    cover_rating: CoverRating
    timestamp: float


class PlayerSession(BaseModel):
    player_id: str
    display_name: str
    score: int = 0
    zones_captured: int = 0
    current_zone_id: Optional[str] = None
    capture_started_at: Optional[float] = None
    capture_target_owner: Optional[str] = None  # zone owner when the capture started
    capture_progress: Optional[float] = None  # None = not capturing
    occupancy_anchor: Optional[float] = None  # start of the current reinforcement period
    last_position: Optional[GeoPoint] = None
    last_seen: Optional[float] = None


class CoverAnalysis(BaseModel):
    cover_rating: CoverRating
    analysis: str
    tactical_advice: str


class MissionObjective(BaseModel):
    description: str
    target: int = Field(default=1, ge=0)
    current: int = Field(default=0, ge=0)
    completed: bool = False


class MissionType(str, Enum):
    CAPTURE = "capture"
    STRATEGIC = "strategic"
    EXPLORATION = "exploration"
    DEFENSE = "defense"


class Mission(BaseModel):
    id: str
    title: str
    description: str
    type: MissionType
    objectives: List[MissionObjective] = Field(default_factory=list)
    reward: int = Field(default=0, ge=0)
    expires_at: float  # ms epoch
    completed: bool = False


class CommentaryType(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ALERT = "alert"
    SUCCESS = "success"


class Commentary(BaseModel):
    message: str
    type: CommentaryType = CommentaryType.INFO


class LeaderboardEntry(BaseModel):
    player_id: str
    display_name: str
    total_captures: int
    score: int
    last_active: float
    rank: int


class LeaderboardAnalysis(BaseModel):
    top_strategy: str
    personal_advice: str
    insights: List[str]


class PositionUpdate(BaseModel):
    display_name: str
    lat: float = Field(..., ge=-90.0, le=90.0)
    lng: float = Field(..., ge=-180.0, le=180.0)
    accuracy: float = Field(default=0.0, ge=0.0)
    timestamp: Optional[float] = None  # ms epoch, server clock when omitted


class PlayerState(BaseModel):
    session: PlayerSession
    current_zone: Optional[Zone] = None
