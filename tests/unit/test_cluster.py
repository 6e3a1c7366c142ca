"""Tests for the hierarchical cluster index."""

import pytest

from src.core.config import ClusteringConfig
from src.core.schemas import ClusterPoint, Job
from src.pipeline.cluster import ClusterIndex, build_index

WORLD = (-180.0, -85.0, 180.0, 85.0)


def _point(job_id: str, lat: float, lon: float) -> ClusterPoint:
    return ClusterPoint(job_id=job_id, lat=lat, lon=lon)


@pytest.fixture()
def paris_pair() -> list[ClusterPoint]:
    return [_point("a", 48.85, 2.35), _point("b", 48.851, 2.351)]


class TestBuild:
    def test_empty_index(self) -> None:
        index = ClusterIndex().build([])
        assert len(index) == 0
        assert index.get_clusters(WORLD, 5) == []

    def test_unbuilt_index(self) -> None:
        assert ClusterIndex().get_clusters(WORLD, 5) == []

    def test_jobs_without_coordinates_skipped(self) -> None:
        jobs = [
            Job(id="x", title="t", company="c", city="Lyon", uniq_hash="hx", lat=45.76, lon=4.83),
            Job(id="y", title="t", company="c", city="?", uniq_hash="hy"),
        ]
        index = ClusterIndex().build(jobs)
        assert len(index) == 1

    def test_min_zoom_above_max_rejected(self) -> None:
        with pytest.raises(ValueError):
            ClusterIndex(min_zoom=10, max_zoom=5)

    def test_build_index_uses_config(self, paris_pair: list[ClusterPoint]) -> None:
        index = build_index(paris_pair, ClusteringConfig(max_zoom=12))
        assert index.max_zoom == 12
        assert len(index) == 2


class TestGetClusters:
    def test_two_close_points_form_one_cluster(self, paris_pair: list[ClusterPoint]) -> None:
        index = ClusterIndex(radius=60, max_zoom=17).build(paris_pair)
        features = index.get_clusters(WORLD, 10)

        assert len(features) == 1
        cluster = features[0]
        assert cluster.cluster is True
        assert cluster.point_count == 2
        assert cluster.cluster_id is not None
        assert sorted(index.expand(cluster.cluster_id)) == ["a", "b"]

    def test_centroid_between_members(self, paris_pair: list[ClusterPoint]) -> None:
        index = ClusterIndex().build(paris_pair)
        (cluster,) = index.get_clusters(WORLD, 10)
        assert 48.85 <= cluster.lat <= 48.851
        assert 2.35 <= cluster.lon <= 2.351

    def test_points_separate_at_max_zoom(self, paris_pair: list[ClusterPoint]) -> None:
        index = ClusterIndex().build(paris_pair)
        features = index.get_clusters(WORLD, 18)
        assert len(features) == 2
        assert all(not f.cluster for f in features)
        assert {f.job_id for f in features} == {"a", "b"}

    def test_far_points_stay_separate(self) -> None:
        index = ClusterIndex().build([_point("paris", 48.85, 2.35), _point("lyon", 45.76, 4.83)])
        features = index.get_clusters(WORLD, 8)
        assert {f.job_id for f in features} == {"paris", "lyon"}

    def test_min_points_keeps_small_groups_apart(self, paris_pair: list[ClusterPoint]) -> None:
        index = ClusterIndex(min_points=3).build(paris_pair)
        features = index.get_clusters(WORLD, 10)
        assert len(features) == 2

    def test_bbox_filters_features(self) -> None:
        index = ClusterIndex().build([_point("paris", 48.85, 2.35), _point("nyc", 40.71, -74.0)])
        features = index.get_clusters((-10.0, 40.0, 10.0, 55.0), 5)
        assert [f.job_id for f in features] == ["paris"]

    def test_world_span_returns_everything(self) -> None:
        index = ClusterIndex().build([_point("paris", 48.85, 2.35), _point("nyc", 40.71, -74.0)])
        features = index.get_clusters((-200.0, -85.0, 200.0, 85.0), 5)
        assert {f.job_id for f in features} == {"paris", "nyc"}

    def test_antimeridian_crossing(self) -> None:
        index = ClusterIndex().build([_point("fiji", -17.7, 178.0), _point("samoa", -13.8, -172.0)])
        features = index.get_clusters((170.0, -30.0, -160.0, 0.0), 4)
        assert {f.job_id for f in features} == {"fiji", "samoa"}

    def test_zoom_clamped(self, paris_pair: list[ClusterPoint]) -> None:
        index = ClusterIndex(max_zoom=17).build(paris_pair)
        assert len(index.get_clusters(WORLD, 40)) == 2
        assert len(index.get_clusters(WORLD, -3)) == 1


class TestExpansion:
    def test_nested_clusters_expand_to_all_leaves(self) -> None:
        points = [
            _point("a", 48.8500, 2.3500),
            _point("b", 48.8501, 2.3501),
            _point("c", 48.8600, 2.3600),
            _point("d", 48.8601, 2.3601),
        ]
        index = ClusterIndex().build(points)
        (top,) = index.get_clusters(WORLD, 5)
        assert top.point_count == 4
        assert sorted(index.expand(top.cluster_id)) == ["a", "b", "c", "d"]  # type: ignore[arg-type]

    def test_children_one_level_down(self, paris_pair: list[ClusterPoint]) -> None:
        index = ClusterIndex().build(paris_pair)
        (cluster,) = index.get_clusters(WORLD, 10)
        children = index.get_children(cluster.cluster_id)  # type: ignore[arg-type]
        assert sum(c.point_count for c in children) == 2

    def test_leaves_paging(self) -> None:
        points = [_point(str(i), 48.85 + i * 1e-5, 2.35) for i in range(6)]
        index = ClusterIndex().build(points)
        (cluster,) = index.get_clusters(WORLD, 8)
        page = index.get_leaves(cluster.cluster_id, limit=2, offset=1)  # type: ignore[arg-type]
        everything = index.get_leaves(cluster.cluster_id)  # type: ignore[arg-type]
        assert len(everything) == 6
        assert page == everything[1:3]

    def test_expansion_zoom_splits_cluster(self, paris_pair: list[ClusterPoint]) -> None:
        index = ClusterIndex().build(paris_pair)
        (cluster,) = index.get_clusters(WORLD, 10)
        zoom = index.get_cluster_expansion_zoom(cluster.cluster_id)  # type: ignore[arg-type]
        assert 10 < zoom <= 18
        assert len(index.get_clusters(WORLD, zoom)) == 2

    @pytest.mark.parametrize("bad_id", [0, 1, 999_999, -5])
    def test_unknown_cluster_id_raises(self, paris_pair: list[ClusterPoint], bad_id: int) -> None:
        index = ClusterIndex().build(paris_pair)
        with pytest.raises(ValueError):
            index.get_children(bad_id)
