"""Tests for core data models."""

import pytest
from pydantic import ValidationError

from src.core.schemas import (
    ClusterPoint,
    Coordinates,
    ErrorResponse,
    Job,
    QueryParams,
    QueryResponse,
)


def _job(**kw: object) -> Job:
    defaults: dict[str, object] = {
        "id": "1",
        "title": "Data Engineer",
        "company": "Acme",
        "city": "Paris",
        "uniq_hash": "h1",
    }
    defaults.update(kw)
    return Job(**defaults)  # type: ignore[arg-type]


class TestJob:
    def test_minimal(self) -> None:
        j = _job()
        assert j.source == "adzuna"
        assert j.remote is False
        assert j.has_coordinates is False

    def test_lat_without_lon_rejected(self) -> None:
        with pytest.raises(ValidationError):
            _job(lat=48.8)

    def test_lon_without_lat_rejected(self) -> None:
        with pytest.raises(ValidationError):
            _job(lon=2.3)

    def test_negative_salary_rejected(self) -> None:
        with pytest.raises(ValidationError):
            _job(salary_min=-1)

    def test_frozen(self) -> None:
        j = _job()
        with pytest.raises(ValidationError):
            j.title = "Other"  # type: ignore[misc]

    def test_with_coordinates_returns_copy(self) -> None:
        j = _job()
        located = j.with_coordinates(Coordinates(lat=48.85, lon=2.35))
        assert located.has_coordinates is True
        assert (located.lat, located.lon) == (48.85, 2.35)
        assert j.has_coordinates is False


class TestClusterPoint:
    def test_from_job(self) -> None:
        p = ClusterPoint.from_job(_job(id="x", lat=45.0, lon=4.0))
        assert p == ClusterPoint(job_id="x", lat=45.0, lon=4.0)

    def test_from_job_without_coordinates(self) -> None:
        assert ClusterPoint.from_job(_job()) is None


class TestQueryParams:
    def test_defaults(self) -> None:
        p = QueryParams()
        assert p.page == 1
        assert p.results_per_page == 20
        assert p.bbox_order == "auto"
        assert p.use_store is False

    def test_results_per_page_clamped(self) -> None:
        assert QueryParams(results_per_page=500).results_per_page == 100
        assert QueryParams(results_per_page=0).results_per_page == 1

    def test_page_clamped(self) -> None:
        assert QueryParams(page=-3).page == 1

    def test_unknown_sort_rejected(self) -> None:
        with pytest.raises(ValidationError):
            QueryParams(sort="relevance")  # type: ignore[arg-type]

    def test_has_radius(self) -> None:
        assert QueryParams(center_lat=48.8, center_lon=2.3, radius_km=10).has_radius is True
        assert QueryParams(center_lat=48.8, center_lon=2.3).has_radius is False
        assert QueryParams(center_lat=48.8, radius_km=10).has_radius is False
        assert QueryParams(center_lat=48.8, center_lon=2.3, radius_km=0).has_radius is False


class TestResponses:
    def test_query_response_from_dump(self) -> None:
        r = QueryResponse.model_validate({"data": [_job().model_dump()], "count": 1})
        assert r.data[0].title == "Data Engineer"

    def test_query_response_rejects_bad_rows(self) -> None:
        with pytest.raises(ValidationError):
            QueryResponse.model_validate({"data": [{"title": "x"}], "count": 1})

    def test_error_response_default_status(self) -> None:
        e = ErrorResponse(message="Failed to fetch jobs", hint="boom")
        assert e.status == 500
        assert e.retry_after_s is None
