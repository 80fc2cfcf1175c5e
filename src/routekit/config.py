"""Application configuration and settings management."""

from typing import Any, Literal, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="ROUTEKIT_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "routekit"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Persistent cache tier
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis URL for the shared cache tier (e.g., redis://localhost:6379/0).",
    )
    redis_socket_timeout: float = Field(default=5.0, gt=0.0)
    redis_connect_timeout: float = Field(default=10.0, gt=0.0)
    redis_reconnect_interval_seconds: float = Field(
        default=30.0,
        ge=0.0,
        description="Minimum delay between reconnect attempts after the shared tier went away.",
    )

    # In-process cache tier
    memory_max_items: int = Field(default=5000, ge=1)
    memory_max_bytes: int = Field(default=50 * 1024 * 1024, ge=1024)
    default_ttl_seconds: int = Field(default=300, ge=1)
    compression_threshold_bytes: int = Field(default=1024, ge=0)

    # Google Maps Platform
    google_maps_api_key: Optional[str] = Field(default=None, description="Server-side Maps API key.")
    google_maps_base_url: str = Field(default="https://maps.googleapis.com/maps/api")
    google_maps_region: str = "nl"
    google_maps_language: str = "nl"
    google_maps_country: str = "NL"
    maps_timeout_seconds: float = Field(default=10.0, gt=0.0)
    maps_max_retries: int = Field(default=2, ge=0)
    maps_backoff_seconds: float = Field(default=0.5, ge=0.0)

    # Supabase configuration
    supabase_url: Optional[str] = Field(
        default=None,
        description="Supabase project URL (e.g., https://xxx.supabase.co).",
    )
    supabase_key: Optional[str] = Field(
        default=None,
        description="Supabase service role key for backend operations.",
    )

    # Warming
    warming_interval_hours: int = Field(default=4, ge=1)
    warming_peak_hours: tuple[int, ...] = Field(default=(8, 18))
    warming_lookahead_days: int = Field(default=7, ge=1)
    cluster_lookahead_days: int = Field(default=3, ge=1)
    warming_batch_size: int = Field(default=5, ge=1)
    warming_batch_delay_seconds: float = Field(default=0.1, ge=0.0)
    warm_on_startup: bool = True

    # Routing
    max_waypoints: int = Field(default=25, ge=1)
    service_minutes_per_stop: int = Field(default=60, ge=0)
    fallback_efficiency: int = Field(default=75, ge=0, le=100)
    speed_driving_kmh: float = Field(default=40.0, gt=0.0)
    speed_bicycling_kmh: float = Field(default=18.0, gt=0.0)
    speed_walking_kmh: float = Field(default=5.0, gt=0.0)
    speed_transit_kmh: float = Field(default=30.0, gt=0.0)
    speed_two_wheeler_kmh: float = Field(default=25.0, gt=0.0)
    service_area_centroids: dict[str, tuple[float, float]] = Field(
        default_factory=lambda: {
            "hoofddorp": (52.3025, 4.6889),
            "amsterdam": (52.3676, 4.9041),
            "haarlem": (52.3874, 4.6462),
            "amstelveen": (52.3114, 4.8701),
            "schiphol": (52.3105, 4.7683),
        },
        description="Depot-like centre per service area (lat, lng), used to pre-compute distance matrices.",
    )

    # Boundary validation
    boundary_postal_confidence: int = Field(default=85, ge=0, le=100)
    boundary_text_match_confidence: int = Field(default=85, ge=0, le=100)
    boundary_geometric_confidence: int = Field(default=95, ge=0, le=100)
    boundary_high_confidence_threshold: int = Field(default=90, ge=0, le=100)
    boundary_confirmed_confidence: int = Field(default=100, ge=0, le=100)
    boundary_disagreement_confidence: int = Field(default=75, ge=0, le=100)
    boundary_cache_ttl_seconds: int = Field(default=30 * 24 * 60 * 60, ge=1)
    quick_check_postal_range: tuple[int, int] = Field(
        default=(5800, 6999),
        description="Inclusive 4-digit postal range used for the cheap likely-in-area check.",
    )

    # Working day used for slot generation
    workday_start: str = "08:00"
    workday_end: str = "17:00"
    slot_step_minutes: int = Field(default=30, ge=5)

    @field_validator("warming_peak_hours", "quick_check_postal_range", mode="before")
    @classmethod
    def _int_tuple(cls, value: Any) -> Any:
        """Accept ``8,18`` or ``[8, 18]`` from the environment as well as real sequences."""
        if isinstance(value, (list, tuple)):
            return tuple(int(item) for item in value)
        if not isinstance(value, str):
            return value
        text = value.strip()
        if text.startswith("["):
            return tuple(int(item) for item in json.loads(text))
        return tuple(int(part) for part in text.split(",") if part.strip())

    @field_validator("warming_peak_hours")
    @classmethod
    def _check_hours(cls, value: tuple[int, ...]) -> tuple[int, ...]:
        for hour in value:
            if not 0 <= hour <= 23:
                raise ValueError(f"Peak hour {hour} is outside 0-23.")
        return value


settings = Settings()
