"""Application configuration and settings management."""

from pathlib import Path
from typing import Any, Literal, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="BD_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Beauty Marketplace Dispatch API"
    api_prefix: str = "/api"
    data_root: Path = Field(default=Path("data"), description="Root directory for local state and seed files.")
    stores_file: Optional[Path] = Field(
        default=None,
        description="Optional CSV store catalog used when the database is unavailable.",
    )

    # Supabase configuration
    supabase_url: Optional[str] = Field(
        default=None,
        description="Supabase project URL (e.g., https://xxx.supabase.co).",
    )
    supabase_key: Optional[str] = Field(
        default=None,
        description="Supabase key used for table access and realtime channels.",
    )

    # Maps providers
    google_maps_api_key: Optional[str] = Field(default=None, description="Google Maps web services key.")
    google_maps_base_url: str = Field(default="https://maps.googleapis.com/maps/api")
    distance_provider: Literal["google", "osrm"] = Field(
        default="google",
        description="Road-network provider used for batched distance lookups.",
    )
    osrm_base_url: Optional[str] = Field(
        default=None,
        description="Base URL for the OSRM routing service (e.g., http://localhost:5000).",
    )
    osrm_profile: Literal["driving", "driving-hgv"] = Field(default="driving")
    maps_timeout_seconds: float = Field(default=10.0, gt=0.0)
    maps_max_retries: int = Field(default=2, ge=0)
    maps_backoff_seconds: float = Field(default=0.5, ge=0.0)

    # Location session and pricing
    default_radius_miles: float = Field(default=25.0, ge=0.0)
    location_ttl_seconds: float = Field(default=3600.0, gt=0.0)
    geolocation_timeout_seconds: float = Field(default=10.0, gt=0.0)
    geolocation_maximum_age_seconds: float = Field(default=300.0, ge=0.0)
    base_delivery_fee: float = Field(default=3.99, ge=0.0)
    base_fee_miles: float = Field(default=2.0, ge=0.0)
    per_mile_rate: float = Field(default=1.50, ge=0.0)
    minutes_per_mile_estimate: float = Field(default=2.5, gt=0.0)

    frontend_allowed_origins: tuple[str, ...] = Field(
        default=(
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:8080",
        ),
        description="Permitted web origins for browser clients (CORS).",
    )

    @field_validator("data_root", "stores_file", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Optional[Path]:
        if value is None or value == "":
            return None
        path_value = value if isinstance(value, Path) else Path(str(value))
        return path_value.expanduser().resolve()

    @field_validator("frontend_allowed_origins", mode="before")
    @classmethod
    def _parse_str_tuple_from_env(cls, value: Any) -> tuple[str, ...]:
        """Parse string tuple from environment variable (comma-separated or JSON array)."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(str(item) for item in value)
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return tuple(str(item) for item in parsed)
            except (json.JSONDecodeError, TypeError):
                pass
            if "," in value:
                return tuple(item.strip() for item in value.split(",") if item.strip())
            if value.strip():
                return (value.strip(),)
        return tuple()


settings = Settings()
