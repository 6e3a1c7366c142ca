"""Core data models for the job map engine."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

SortOrder = Literal["salary_desc", "salary_asc", "date_desc"]
BboxOrder = Literal["auto", "lonlat", "latlon"]


class Coordinates(BaseModel):
    """A point in decimal degrees, as reported by a geocoding provider."""

    model_config = ConfigDict(frozen=True)

    lat: float
    lon: float


class Job(BaseModel):
    """A canonical job posting.

    Frozen: coordinates are filled via ``with_coordinates`` which returns a copy.
    ``lat`` and ``lon`` are either both set or both unset.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    source: str = "adzuna"
    source_id: str | None = None
    title: str
    company: str
    city: str
    description: str | None = None
    url: str | None = None
    posted_at: str | None = None
    salary_min: int | None = Field(default=None, ge=0)
    salary_max: int | None = Field(default=None, ge=0)
    remote: bool = False
    lat: float | None = None
    lon: float | None = None
    uniq_hash: str

    @model_validator(mode="after")
    def coordinates_paired(self) -> "Job":
        if (self.lat is None) != (self.lon is None):
            msg = "lat and lon must be set together"
            raise ValueError(msg)
        return self

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lon is not None

    def with_coordinates(self, coords: Coordinates) -> "Job":
        """Return a copy with lat/lon filled in."""
        return self.model_copy(update={"lat": coords.lat, "lon": coords.lon})


class ClusterPoint(BaseModel):
    """A job location fed into the cluster index."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    lat: float
    lon: float

    @classmethod
    def from_job(cls, job: Job) -> "ClusterPoint | None":
        if job.lat is None or job.lon is None:
            return None
        return cls(job_id=job.id, lat=job.lat, lon=job.lon)


class ClusterFeature(BaseModel):
    """A map marker: a single job (leaf) or an aggregate of nearby jobs."""

    model_config = ConfigDict(frozen=True)

    lat: float
    lon: float
    cluster: bool = False
    cluster_id: int | None = None
    point_count: int = 1
    job_id: str | None = None


class RateDecision(BaseModel):
    """Outcome of a rate-limiter admission check."""

    model_config = ConfigDict(frozen=True)

    allowed: bool
    retry_after_ms: int | None = None


class SearchPage(BaseModel):
    """One page of raw upstream results plus the provider's total count hint."""

    results: list[dict[str, Any]] = Field(default_factory=list)
    count: int | None = None


class ImportSummary(BaseModel):
    """Summary of a single import run."""

    imported: int
    pages: int = 0
    fetched: int = 0
    normalized: int = 0
    geocoded: int = 0
    started_at: datetime = Field(default_factory=datetime.now)
    finished_at: datetime = Field(default_factory=datetime.now)


class QueryParams(BaseModel):
    """Inputs to the job query operation."""

    keyword: str | None = None
    city: str | None = None
    min_salary: int | None = Field(default=None, ge=0)
    max_salary: int | None = Field(default=None, ge=0)
    page: int = 1
    results_per_page: int = 20
    bbox: str | None = None
    bbox_order: BboxOrder = "auto"
    center_lat: float | None = None
    center_lon: float | None = None
    radius_km: float | None = None
    sort: SortOrder | None = None
    use_store: bool = False

    @model_validator(mode="after")
    def clamp_paging(self) -> "QueryParams":
        # Mirrors the upstream API bounds; out-of-range values are clamped, not rejected.
        self.results_per_page = min(100, max(1, self.results_per_page))
        self.page = max(1, self.page)
        return self

    @property
    def has_radius(self) -> bool:
        return (
            self.center_lat is not None
            and self.center_lon is not None
            and bool(self.radius_km)
        )


class QueryResponse(BaseModel):
    """Successful query result: ``{data, count}``."""

    data: list[Job]
    count: int = Field(ge=0)


class ErrorResponse(BaseModel):
    """Failed operation result: ``{message, hint}`` plus an HTTP-like status."""

    message: str
    hint: str
    status: int = 500
    retry_after_s: int | None = None
