"""Configuration models and YAML loader for the job map engine."""

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator


class ThrottleConfig(BaseModel):
    """Fixed-rate gate for an outbound provider: `limit` starts per `interval_s`."""

    limit: int = Field(default=1, ge=1, le=50)
    interval_s: float = Field(default=1.0, gt=0.0)


class AdzunaConfig(BaseModel):
    """Upstream job search API settings."""

    base_url: str = "https://api.adzuna.com/v1/api/jobs"
    country: str = "fr"
    timeout_s: float = Field(default=20.0, gt=0.0)
    throttle: ThrottleConfig = Field(
        default_factory=lambda: ThrottleConfig(limit=5, interval_s=1.0),
    )

    @field_validator("country")
    @classmethod
    def country_lowercase(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            msg = "country must not be empty"
            raise ValueError(msg)
        return v


class GeocodingConfig(BaseModel):
    """Primary (Mapbox) and secondary (Nominatim) geocoding settings."""

    country: str = "fr"
    user_agent: str = "JobMap/1.0 (+https://jobmap.example) - contact: ops@jobmap.example"
    timeout_s: float = Field(default=10.0, gt=0.0)
    nominatim_throttle: ThrottleConfig = Field(default_factory=ThrottleConfig)
    durable_cache: bool = False


class RateLimitConfig(BaseModel):
    """Per-client fixed-window admission limits for the query operation."""

    window_ms: int = Field(default=60_000, ge=1)
    max_requests: int = Field(default=60, ge=1)


class ImporterConfig(BaseModel):
    """Pages pulled by a scheduled import run."""

    pages: list[int] = Field(default_factory=lambda: [1, 2, 3])
    results_per_page: int = Field(default=50, ge=1, le=100)

    @field_validator("pages")
    @classmethod
    def pages_positive(cls, v: list[int]) -> list[int]:
        if not v:
            msg = "at least one page must be configured"
            raise ValueError(msg)
        if any(p < 1 for p in v):
            msg = "page numbers start at 1"
            raise ValueError(msg)
        return v


class ClusteringConfig(BaseModel):
    """Options for the map cluster index."""

    radius: float = Field(default=60.0, gt=0.0)
    extent: int = Field(default=512, ge=1)
    min_zoom: int = Field(default=0, ge=0, le=30)
    max_zoom: int = Field(default=17, ge=0, le=30)
    min_points: int = Field(default=2, ge=1)


class DatabaseConfig(BaseModel):
    """Database configuration."""

    path: str = "data/jobs.db"


class Credentials(BaseModel):
    """Secrets read from the environment, never from YAML."""

    adzuna_app_id: str = ""
    adzuna_app_key: str = ""
    mapbox_token: str = ""
    cron_secret: str = ""

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> "Credentials":
        """Build credentials from environment variables (or the given mapping)."""
        source = os.environ if env is None else env
        return cls(
            adzuna_app_id=source.get("ADZUNA_APP_ID", ""),
            adzuna_app_key=source.get("ADZUNA_APP_KEY", ""),
            mapbox_token=source.get("MAPBOX_TOKEN", ""),
            cron_secret=source.get("CRON_SECRET", ""),
        )

    @property
    def has_adzuna(self) -> bool:
        return bool(self.adzuna_app_id and self.adzuna_app_key)


class Settings(BaseModel):
    """Top-level settings loaded from YAML."""

    environment: Literal["development", "production"] = "development"
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    adzuna: AdzunaConfig = Field(default_factory=AdzunaConfig)
    geocoding: GeocodingConfig = Field(default_factory=GeocodingConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    importer: ImporterConfig = Field(default_factory=ImporterConfig)
    clustering: ClusteringConfig = Field(default_factory=ClusteringConfig)
    credentials: Credentials = Field(default_factory=Credentials, exclude=True)

    @field_validator("environment", mode="before")
    @classmethod
    def normalize_environment(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().lower()
            if v in ("prod", "production"):
                return "production"
            if v in ("dev", "development", "test"):
                return "development"
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_yaml(
        cls,
        path: str | Path,
        env: dict[str, str] | None = None,
    ) -> "Settings":
        """Load settings from a YAML file, with secrets taken from the environment.

        ``JOBMAP_ENV`` overrides the ``environment`` key when set.
        """
        path = Path(path)
        if not path.exists():
            msg = f"Config file not found: {path}"
            raise FileNotFoundError(msg)
        raw: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
        source = os.environ if env is None else env
        if source.get("JOBMAP_ENV"):
            raw["environment"] = source["JOBMAP_ENV"]
        settings = cls.model_validate(raw)
        settings.credentials = Credentials.from_env(env)
        return settings
