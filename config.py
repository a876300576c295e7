"""Configuration management."""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from services.zone_state import (
    CAPTURE_DURATION_MS,
    CAPTURE_REWARD,
    DECAY_INTERVAL_MS,
    DEFAULT_DECAY_RATE_PER_MINUTE,
    MAX_HP,
    REINFORCE_AMOUNT,
    REINFORCE_INTERVAL_MS,
)
from utils.tiles import TILE_SIZE_METERS


class Settings(BaseSettings):
    """Game and service settings pulled from ``ZONES_*`` environment variables."""

    # Grid
    tile_size_meters: float = Field(default=TILE_SIZE_METERS, gt=0, description="Tile edge length in metres")
    grid_radius: int = Field(default=5, ge=0, description="Tiles generated around each position sample")

    # Zone lifecycle
    max_hp: float = Field(default=MAX_HP, gt=0, description="Zone HP capacity")
    capture_duration_ms: int = Field(default=CAPTURE_DURATION_MS, gt=0, description="Occupancy needed to capture")
    capture_reward: int = Field(default=CAPTURE_REWARD, ge=0, description="Score awarded per capture")
    reinforce_interval_ms: int = Field(default=REINFORCE_INTERVAL_MS, gt=0, description="Occupancy per reinforcement")
    reinforce_amount: float = Field(default=REINFORCE_AMOUNT, ge=0, description="HP restored per reinforcement")
    decay_interval_ms: int = Field(default=DECAY_INTERVAL_MS, gt=0, description="Global decay cadence")
    decay_rate_per_minute: float = Field(
        default=DEFAULT_DECAY_RATE_PER_MINUTE, ge=0, description="HP lost per minute without reinforcement"
    )

    # Tactical AI collaborator
    gemini_api_key: Optional[str] = Field(default=None, description="Gemini API key; fallbacks only when unset")
    gemini_model: str = Field(default="gemini-2.0-flash", description="Gemini model name")
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta", description="Gemini REST endpoint"
    )
    gemini_timeout_seconds: float = Field(default=10.0, gt=0, description="Gemini request timeout")

    # API
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")

    # Startup
    zone_snapshot_path: Optional[str] = Field(default=None, description="JSON zone snapshot to seed the registry")

    # Logging
    log_level: str = Field(default="INFO", description="Log level")

    model_config = SettingsConfigDict(env_prefix="ZONES_", env_file=".env", env_file_encoding="utf-8")


settings = Settings()
