"""Job query operation consumed by the map client.

Flow: rate-limit gate → jobs from upstream (or the store) → geocode gaps →
spatial filter → sort → response shape validation.
"""

import logging
import math
import sqlite3
from collections.abc import Mapping

from pydantic import ValidationError

from src.core.config import Settings
from src.core.db import fetch_jobs, jobs_within_km
from src.core.exceptions import ConfigurationError, JobMapError, ResponseShapeError
from src.core.schemas import ErrorResponse, Job, QueryParams, QueryResponse
from src.geocoding.resolver import GeocodeResolver
from src.pipeline.ingest import fill_coordinates
from src.pipeline.normalizer import normalize_all
from src.pipeline.rate_limiter import RateLimiter
from src.pipeline.spatial import filter_jobs, parse_bbox, sort_jobs
from src.sources.base import JobSource, SourceQuery

logger = logging.getLogger(__name__)


def client_id_from_headers(headers: Mapping[str, str], remote_addr: str | None = None) -> str:
    """Identify a client: first ``X-Forwarded-For`` hop, else the peer address."""
    lowered = {k.lower(): v for k, v in headers.items()}
    forwarded = lowered.get("x-forwarded-for", "")
    first = forwarded.split(",")[0].strip()
    return first or remote_addr or "unknown"


class JobQueryService:
    """Serves ``{data, count}`` results for a query, enforcing the rate limit per client."""

    def __init__(
        self,
        settings: Settings,
        source: JobSource,
        resolver: GeocodeResolver,
        rate_limiter: RateLimiter,
        conn: sqlite3.Connection | None = None,
    ) -> None:
        self._settings = settings
        self._source = source
        self._resolver = resolver
        self._limiter = rate_limiter
        self._conn = conn

    async def query(
        self,
        params: QueryParams,
        client_id: str,
    ) -> QueryResponse | ErrorResponse:
        decision = self._limiter.admit(client_id)
        if not decision.allowed:
            return ErrorResponse(
                message="Too many requests",
                hint="Rate limit hit. Try again later.",
                status=429,
                retry_after_s=math.ceil((decision.retry_after_ms or 1000) / 1000),
            )

        if self._settings.is_production and not self._settings.credentials.has_adzuna:
            logger.error("Adzuna credentials missing in production")
            return ErrorResponse(
                message="Server misconfiguration",
                hint="ADZUNA_APP_ID and ADZUNA_APP_KEY must be set in production",
            )

        try:
            if params.use_store and self._conn is not None:
                jobs = self._from_store(params)
            else:
                jobs = await self._from_upstream(params)

            bbox = parse_bbox(params.bbox, params.bbox_order)
            center = (params.center_lat, params.center_lon) if params.has_radius else None
            filtered = filter_jobs(jobs, bbox=bbox, center=center, radius_km=params.radius_km)  # type: ignore[arg-type]
            return _validated(sort_jobs(filtered, params.sort))
        except ResponseShapeError as e:
            logger.warning("Validation failed: %s", e)
            return ErrorResponse(
                message="Invalid data shape",
                hint="The API returned unexpected data",
            )
        except ConfigurationError as e:
            logger.error("Configuration error: %s", e)
            return ErrorResponse(message="Server misconfiguration", hint=e.hint)
        except (JobMapError, sqlite3.Error) as e:
            logger.error("Query failed: %s", e)
            return ErrorResponse(message="Failed to fetch jobs", hint=str(e) or "Unknown error")
        except Exception as e:
            logger.exception("Unexpected error while querying jobs")
            return ErrorResponse(message="Failed to fetch jobs", hint=str(e) or "Unknown error")

    async def _from_upstream(self, params: QueryParams) -> list[Job]:
        page = await self._source.fetch_page(
            params.page,
            params.results_per_page,
            SourceQuery(
                keyword=params.keyword,
                city=params.city,
                min_salary=params.min_salary,
                max_salary=params.max_salary,
            ),
        )
        jobs = normalize_all(page.results, source=self._source.source_id)
        jobs, _ = await fill_coordinates(jobs, self._resolver)
        # Markers need coordinates; unresolved jobs are left out.
        return [j for j in jobs if j.has_coordinates]

    def _from_store(self, params: QueryParams) -> list[Job]:
        assert self._conn is not None
        if params.has_radius:
            jobs = jobs_within_km(
                self._conn,
                params.center_lat,  # type: ignore[arg-type]
                params.center_lon,  # type: ignore[arg-type]
                params.radius_km,  # type: ignore[arg-type]
                q=params.keyword,
                city_q=params.city,
                limit_rows=params.results_per_page,
            )
            return [j for j in jobs if _salary_in_range(j, params)]
        return fetch_jobs(
            self._conn,
            q=params.keyword,
            city_q=params.city,
            min_salary=params.min_salary,
            max_salary=params.max_salary,
            limit_rows=params.results_per_page,
            offset=(params.page - 1) * params.results_per_page,
        )


def _salary_in_range(job: Job, params: QueryParams) -> bool:
    high = job.salary_max if job.salary_max is not None else job.salary_min
    low = job.salary_min if job.salary_min is not None else job.salary_max
    if params.min_salary is not None and (high is None or high < params.min_salary):
        return False
    if params.max_salary is not None and (low is None or low > params.max_salary):
        return False
    return True


def _validated(jobs: list[Job]) -> QueryResponse:
    """Re-validate the outgoing payload from its serialized form."""
    payload = {"data": [j.model_dump() for j in jobs], "count": len(jobs)}
    try:
        return QueryResponse.model_validate(payload)
    except ValidationError as e:
        raise ResponseShapeError(str(e)) from e
