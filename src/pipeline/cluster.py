"""Hierarchical point clustering for map display.

Points are projected onto the Web-Mercator unit square and clustered once per
zoom level, from ``max_zoom`` down to ``min_zoom``: at each level, points within
``radius / (extent * 2**zoom)`` of a seed merge into a count-weighted cluster.
Building is the expensive step; ``get_clusters`` only does a range lookup on
the prebuilt level and is meant to run on every viewport change.

Cluster ids encode the index of the seed node and the zoom level it was formed
from, so children can be recovered without storing member lists.
"""

import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from src.core.config import ClusteringConfig
from src.core.schemas import ClusterFeature, ClusterPoint, Job

logger = logging.getLogger(__name__)

_NOT_VISITED = math.inf


@dataclass
class _Node:
    x: float
    y: float
    id: int  # leaf index for points, encoded cluster id for clusters
    num_points: int = 1
    is_cluster: bool = False
    parent_id: int = -1
    zoom: float = _NOT_VISITED
    job_id: str | None = None


class _GridIndex:
    """Uniform-grid spatial index over one zoom level's nodes."""

    def __init__(self, nodes: list[_Node], cell_size: float) -> None:
        self.nodes = nodes
        self._cell = cell_size
        self._cells: dict[tuple[int, int], list[int]] = {}
        for i, n in enumerate(nodes):
            self._cells.setdefault(self._key(n.x, n.y), []).append(i)

    def _key(self, x: float, y: float) -> tuple[int, int]:
        return (math.floor(x / self._cell), math.floor(y / self._cell))

    def within(self, x: float, y: float, r: float) -> list[int]:
        """Indices of nodes within Euclidean distance r of (x, y)."""
        r2 = r * r
        min_cx, min_cy = self._key(x - r, y - r)
        max_cx, max_cy = self._key(x + r, y + r)
        found: list[int] = []
        for cx in range(min_cx, max_cx + 1):
            for cy in range(min_cy, max_cy + 1):
                for i in self._cells.get((cx, cy), ()):
                    n = self.nodes[i]
                    if (n.x - x) ** 2 + (n.y - y) ** 2 <= r2:
                        found.append(i)
        return found

    def range(self, min_x: float, min_y: float, max_x: float, max_y: float) -> list[int]:
        """Indices of nodes inside the axis-aligned box."""
        min_cx, min_cy = self._key(min_x, min_y)
        max_cx, max_cy = self._key(max_x, max_y)
        span = (max_cx - min_cx + 1) * (max_cy - min_cy + 1)
        if span > len(self._cells):
            candidates: Iterable[int] = range(len(self.nodes))
        else:
            candidates = (
                i
                for cx in range(min_cx, max_cx + 1)
                for cy in range(min_cy, max_cy + 1)
                for i in self._cells.get((cx, cy), ())
            )
        return sorted(
            i for i in candidates
            if min_x <= self.nodes[i].x <= max_x and min_y <= self.nodes[i].y <= max_y
        )


class ClusterIndex:
    """Static cluster index over a set of job locations.

    Usage::

        index = ClusterIndex(radius=60, max_zoom=17).build(points)
        features = index.get_clusters((2.0, 48.0, 2.7, 49.0), zoom=10)
        job_ids = index.expand(features[0].cluster_id)
    """

    def __init__(
        self,
        radius: float = 60.0,
        extent: int = 512,
        min_zoom: int = 0,
        max_zoom: int = 17,
        min_points: int = 2,
    ) -> None:
        if min_zoom > max_zoom:
            msg = "min_zoom must not exceed max_zoom"
            raise ValueError(msg)
        self.radius = radius
        self.extent = extent
        self.min_zoom = min_zoom
        self.max_zoom = max_zoom
        self.min_points = min_points
        self._trees: dict[int, _GridIndex] = {}
        self._leaves: list[ClusterPoint] = []

    @classmethod
    def from_config(cls, config: ClusteringConfig) -> "ClusterIndex":
        return cls(
            radius=config.radius,
            extent=config.extent,
            min_zoom=config.min_zoom,
            max_zoom=config.max_zoom,
            min_points=config.min_points,
        )

    def __len__(self) -> int:
        return len(self._leaves)

    def build(self, points: Iterable[ClusterPoint | Job]) -> "ClusterIndex":
        """Index the points (jobs without coordinates are skipped)."""
        leaves: list[ClusterPoint] = []
        for p in points:
            point = ClusterPoint.from_job(p) if isinstance(p, Job) else p
            if point is not None:
                leaves.append(point)
        self._leaves = leaves
        self._trees = {}

        nodes = [
            _Node(x=_lon_x(p.lon), y=_lat_y(p.lat), id=i, job_id=p.job_id)
            for i, p in enumerate(leaves)
        ]
        self._trees[self.max_zoom + 1] = _GridIndex(nodes, self._radius_at(self.max_zoom))

        for zoom in range(self.max_zoom, self.min_zoom - 1, -1):
            nodes = self._cluster(nodes, zoom)
            self._trees[zoom] = _GridIndex(nodes, self._radius_at(max(zoom - 1, 0)))

        logger.debug(
            "Built cluster index: %d points, %d top-level features",
            len(leaves), len(self._trees[self.min_zoom].nodes),
        )
        return self

    def get_clusters(self, bbox: Sequence[float], zoom: float) -> list[ClusterFeature]:
        """Features inside ``[minLon, minLat, maxLon, maxLat]`` at the given zoom."""
        if not self._trees:
            return []
        min_lon = ((bbox[0] + 180) % 360 + 360) % 360 - 180
        min_lat = max(-90.0, min(90.0, bbox[1]))
        max_lon = 180.0 if bbox[2] == 180 else ((bbox[2] + 180) % 360 + 360) % 360 - 180
        max_lat = max(-90.0, min(90.0, bbox[3]))

        if bbox[2] - bbox[0] >= 360:
            min_lon, max_lon = -180.0, 180.0
        elif min_lon > max_lon:
            # Box crosses the antimeridian: split in two.
            east = self.get_clusters((min_lon, min_lat, 180.0, max_lat), zoom)
            west = self.get_clusters((-180.0, min_lat, max_lon, max_lat), zoom)
            return east + west

        tree = self._trees[self._limit_zoom(zoom)]
        ids = tree.range(_lon_x(min_lon), _lat_y(max_lat), _lon_x(max_lon), _lat_y(min_lat))
        return [self._feature(tree.nodes[i]) for i in ids]

    def get_children(self, cluster_id: int) -> list[ClusterFeature]:
        """Direct children (clusters or leaves) one zoom level below the cluster."""
        return [self._feature(n) for n in self._child_nodes(cluster_id)]

    def get_leaves(
        self,
        cluster_id: int,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ClusterFeature]:
        """All leaf features under a cluster, however deeply nested."""
        leaves: list[ClusterFeature] = []
        self._append_leaves(cluster_id, leaves)
        end = None if limit is None else offset + limit
        return leaves[offset:end]

    def expand(self, cluster_id: int) -> list[str]:
        """Job ids of every member of a cluster."""
        return [f.job_id for f in self.get_leaves(cluster_id) if f.job_id is not None]

    def get_cluster_expansion_zoom(self, cluster_id: int) -> int:
        """Smallest zoom at which the cluster splits into more than one feature."""
        expansion_zoom = self._origin_zoom(cluster_id) - 1
        while expansion_zoom <= self.max_zoom:
            children = self._child_nodes(cluster_id)
            expansion_zoom += 1
            if len(children) != 1 or not children[0].is_cluster:
                break
            cluster_id = children[0].id
        return expansion_zoom

    def _cluster(self, nodes: list[_Node], zoom: int) -> list[_Node]:
        r = self._radius_at(zoom)
        tree = self._trees[zoom + 1]
        n_leaves = len(self._leaves)
        next_nodes: list[_Node] = []

        for i, p in enumerate(nodes):
            if p.zoom <= zoom:
                continue
            p.zoom = zoom

            neighbor_ids = tree.within(p.x, p.y, r)
            origin_points = p.num_points
            num_points = origin_points
            for nid in neighbor_ids:
                b = tree.nodes[nid]
                if b.zoom > zoom:
                    num_points += b.num_points

            if num_points > origin_points and num_points >= self.min_points:
                wx = p.x * origin_points
                wy = p.y * origin_points
                cluster_id = (i << 5) + (zoom + 1) + n_leaves
                for nid in neighbor_ids:
                    b = tree.nodes[nid]
                    if b.zoom <= zoom:
                        continue
                    b.zoom = zoom
                    wx += b.x * b.num_points
                    wy += b.y * b.num_points
                    b.parent_id = cluster_id
                p.parent_id = cluster_id
                next_nodes.append(_Node(
                    x=wx / num_points,
                    y=wy / num_points,
                    id=cluster_id,
                    num_points=num_points,
                    is_cluster=True,
                ))
            else:
                next_nodes.append(p)
                if num_points > 1:
                    for nid in neighbor_ids:
                        b = tree.nodes[nid]
                        if b.zoom <= zoom:
                            continue
                        b.zoom = zoom
                        next_nodes.append(b)
        return next_nodes

    def _child_nodes(self, cluster_id: int) -> list[_Node]:
        origin_id = self._origin_id(cluster_id)
        origin_zoom = self._origin_zoom(cluster_id)
        tree = self._trees.get(origin_zoom)
        if cluster_id < len(self._leaves) or tree is None or not 0 <= origin_id < len(tree.nodes):
            msg = f"No cluster with id {cluster_id}"
            raise ValueError(msg)
        origin = tree.nodes[origin_id]
        r = self._radius_at(origin_zoom - 1)
        children = [
            tree.nodes[i] for i in tree.within(origin.x, origin.y, r)
            if tree.nodes[i].parent_id == cluster_id
        ]
        if not children:
            msg = f"No cluster with id {cluster_id}"
            raise ValueError(msg)
        return children

    def _append_leaves(self, cluster_id: int, out: list[ClusterFeature]) -> None:
        for child in self._child_nodes(cluster_id):
            if child.is_cluster:
                self._append_leaves(child.id, out)
            else:
                out.append(self._feature(child))

    def _origin_id(self, cluster_id: int) -> int:
        return (cluster_id - len(self._leaves)) >> 5

    def _origin_zoom(self, cluster_id: int) -> int:
        return (cluster_id - len(self._leaves)) % 32

    def _radius_at(self, zoom: int) -> float:
        return self.radius / (self.extent * 2 ** zoom)

    def _limit_zoom(self, zoom: float) -> int:
        return max(self.min_zoom, min(math.floor(zoom), self.max_zoom + 1))

    def _feature(self, node: _Node) -> ClusterFeature:
        if node.is_cluster:
            return ClusterFeature(
                lat=_y_lat(node.y),
                lon=_x_lon(node.x),
                cluster=True,
                cluster_id=node.id,
                point_count=node.num_points,
            )
        leaf = self._leaves[node.id]
        return ClusterFeature(lat=leaf.lat, lon=leaf.lon, job_id=leaf.job_id)


def build_index(
    points: Iterable[ClusterPoint | Job],
    config: ClusteringConfig | None = None,
) -> ClusterIndex:
    """Build a ClusterIndex from points using the given (or default) options."""
    return ClusterIndex.from_config(config or ClusteringConfig()).build(points)


def _lon_x(lon: float) -> float:
    return lon / 360 + 0.5


def _lat_y(lat: float) -> float:
    sin = math.sin(lat * math.pi / 180)
    if sin >= 1:
        return 0.0
    if sin <= -1:
        return 1.0
    y = 0.5 - 0.25 * math.log((1 + sin) / (1 - sin)) / math.pi
    return min(1.0, max(0.0, y))


def _x_lon(x: float) -> float:
    return (x - 0.5) * 360


def _y_lat(y: float) -> float:
    y2 = (180 - y * 360) * math.pi / 180
    return 360 * math.atan(math.exp(y2)) / math.pi - 90
