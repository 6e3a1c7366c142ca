"""Tests for bbox parsing, spatial filters and sorting."""

import pytest

from src.core.schemas import Job
from src.pipeline.spatial import (
    BoundingBox,
    filter_by_bbox,
    filter_by_radius,
    filter_jobs,
    haversine_km,
    parse_bbox,
    sort_jobs,
)

PARIS = (48.8566, 2.3522)


def _job(id: str = "1", lat: float | None = None, lon: float | None = None, **kw: object) -> Job:
    defaults: dict[str, object] = {
        "id": id,
        "title": "Engineer",
        "company": "Acme",
        "city": "Paris",
        "uniq_hash": f"h-{id}",
        "lat": lat,
        "lon": lon,
    }
    defaults.update(kw)
    return Job(**defaults)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# parse_bbox
# ---------------------------------------------------------------------------


class TestParseBbox:
    def test_lonlat_order(self) -> None:
        assert parse_bbox("2.0,48.0,2.5,48.5", order="lonlat") == BoundingBox(2.0, 48.0, 2.5, 48.5)

    def test_lonlat_unordered_corners(self) -> None:
        assert parse_bbox("2.5,48.5,2.0,48.0", order="lonlat") == BoundingBox(2.0, 48.0, 2.5, 48.5)

    def test_latlon_order(self) -> None:
        assert parse_bbox("48.0,2.0,48.5,2.5", order="latlon") == BoundingBox(2.0, 48.0, 2.5, 48.5)

    def test_auto_keeps_lonlat_when_longitude_out_of_lat_range(self) -> None:
        assert parse_bbox("-120.5,35.0,-119.5,36.0") == BoundingBox(-120.5, 35.0, -119.5, 36.0)

    def test_auto_swaps_when_all_values_fit_latitudes(self) -> None:
        """Ambiguous boxes (both readings valid) are read lat-first under auto."""
        assert parse_bbox("2.0,48.0,2.5,48.5") == BoundingBox(48.0, 2.0, 48.5, 2.5)

    def test_non_numeric_parts_dropped(self) -> None:
        assert parse_bbox("2.0,abc,48.0,2.5,48.5", order="lonlat") == BoundingBox(2.0, 48.0, 2.5, 48.5)

    @pytest.mark.parametrize("text", [None, "", "1,2,3", "1,2,3,4,5", "a,b,c,d", "1,2,nan,4"])
    def test_invalid_returns_none(self, text: str | None) -> None:
        assert parse_bbox(text) is None

    def test_contains(self) -> None:
        box = BoundingBox(2.0, 48.0, 2.5, 48.5)
        assert box.contains(48.2, 2.2) is True
        assert box.contains(49.0, 2.2) is False


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


class TestHaversine:
    def test_zero(self) -> None:
        assert haversine_km(*PARIS, *PARIS) == pytest.approx(0.0)

    def test_paris_lyon(self) -> None:
        assert haversine_km(*PARIS, 45.764, 4.8357) == pytest.approx(392, abs=3)


class TestFilters:
    def test_bbox_includes_and_excludes(self) -> None:
        inside = _job("in", 48.2, 2.2)
        outside = _job("out", 49.0, 2.2)
        box = parse_bbox("2.0,48.0,2.5,48.5", order="lonlat")
        assert box is not None
        assert filter_by_bbox([inside, outside], box) == [inside]

    def test_auto_bbox_ambiguity_pinned(self) -> None:
        """Under auto the same string is swapped, so the Paris-area job is outside."""
        box = parse_bbox("2.0,48.0,2.5,48.5")
        assert box is not None
        assert filter_by_bbox([_job("in", 48.2, 2.2)], box) == []

    def test_radius(self) -> None:
        five_km = _job("near", 48.9016, 2.3522)
        fifty_km = _job("far", 49.3066, 2.3522)
        assert filter_by_radius([five_km, fifty_km], PARIS[0], PARIS[1], 10) == [five_km]

    def test_radius_boundary_inclusive(self) -> None:
        j = _job("edge", 48.9016, 2.3522)
        d = haversine_km(PARIS[0], PARIS[1], 48.9016, 2.3522)
        assert filter_by_radius([j], PARIS[0], PARIS[1], d) == [j]

    def test_jobs_without_coordinates_never_match(self) -> None:
        unlocated = _job("x")
        box = BoundingBox(-180, -90, 180, 90)
        assert filter_by_bbox([unlocated], box) == []
        assert filter_by_radius([unlocated], PARIS[0], PARIS[1], 20_000) == []

    def test_bbox_wins_over_radius(self) -> None:
        in_box_far = _job("a", 10.0, 10.0)
        near_center = _job("b", *PARIS)
        result = filter_jobs(
            [in_box_far, near_center],
            bbox=BoundingBox(9.0, 9.0, 11.0, 11.0),
            center=PARIS,
            radius_km=10,
        )
        assert result == [in_box_far]

    def test_no_filter_returns_copy(self) -> None:
        jobs = [_job("a"), _job("b", 1.0, 1.0)]
        result = filter_jobs(jobs)
        assert result == jobs
        assert result is not jobs


# ---------------------------------------------------------------------------
# Sorting
# ---------------------------------------------------------------------------


class TestSortJobs:
    def test_salary_desc_missing_last(self) -> None:
        jobs = [_job("a", salary_max=30000), _job("b"), _job("c", salary_max=90000)]
        assert [j.id for j in sort_jobs(jobs, "salary_desc")] == ["c", "a", "b"]

    def test_salary_asc_missing_first(self) -> None:
        jobs = [_job("a", salary_min=30000), _job("b"), _job("c", salary_min=10000)]
        assert [j.id for j in sort_jobs(jobs, "salary_asc")] == ["b", "c", "a"]

    def test_date_desc(self) -> None:
        jobs = [
            _job("old", posted_at="2024-01-01T00:00:00Z"),
            _job("bad", posted_at="not a date"),
            _job("new", posted_at="2024-06-01T12:00:00Z"),
            _job("none"),
        ]
        assert [j.id for j in sort_jobs(jobs, "date_desc")] == ["new", "old", "bad", "none"]

    def test_naive_and_aware_timestamps_compare(self) -> None:
        jobs = [_job("naive", posted_at="2024-03-01T00:00:00"), _job("aware", posted_at="2024-02-01T00:00:00+00:00")]
        assert [j.id for j in sort_jobs(jobs, "date_desc")] == ["naive", "aware"]

    def test_stable_on_ties(self) -> None:
        jobs = [_job(str(i), salary_max=100) for i in range(5)]
        assert [j.id for j in sort_jobs(jobs, "salary_desc")] == ["0", "1", "2", "3", "4"]

    @pytest.mark.parametrize("criterion", [None, "relevance"])
    def test_unknown_keeps_order(self, criterion: str | None) -> None:
        jobs = [_job("b", salary_max=1), _job("a", salary_max=2)]
        assert [j.id for j in sort_jobs(jobs, criterion)] == ["b", "a"]

    def test_input_not_mutated(self) -> None:
        jobs = [_job("a", salary_max=1), _job("b", salary_max=2)]
        sort_jobs(jobs, "salary_desc")
        assert [j.id for j in jobs] == ["a", "b"]
