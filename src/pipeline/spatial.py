"""Spatial filtering and sorting over an in-memory job set.

Pure functions: inputs are never mutated, every filter returns a new list.
Jobs without coordinates never match a bounding-box or radius filter.
"""

import logging
import math
from datetime import datetime
from typing import NamedTuple

from src.core.schemas import BboxOrder, Job, SortOrder

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0

_EPOCH = datetime(1970, 1, 1)


class BoundingBox(NamedTuple):
    """A rectangle in canonical ``minLon, minLat, maxLon, maxLat`` order."""

    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    def contains(self, lat: float, lon: float) -> bool:
        return (
            self.min_lat <= lat <= self.max_lat
            and self.min_lon <= lon <= self.max_lon
        )


def parse_bbox(text: str | None, order: BboxOrder = "auto") -> BoundingBox | None:
    """Parse a comma-separated 4-number box into canonical order.

    With ``order="auto"``, if the 1st and 3rd numbers fit in ±90 and the 2nd
    and 4th in ±180, the input is read as ``minLat,minLon,maxLat,maxLon``.
    Boxes where both readings are numerically valid (most of Europe, for one)
    are therefore read lat-first; pass ``order="lonlat"`` to skip the guess.

    Returns None unless exactly four numbers are present.
    """
    if not text:
        return None
    parts: list[float] = []
    for raw in text.split(","):
        try:
            value = float(raw)
        except ValueError:
            continue
        if math.isnan(value):
            continue
        parts.append(value)
    if len(parts) != 4:
        logger.debug("Ignoring bbox %r: expected 4 numbers, got %d", text, len(parts))
        return None

    a, b, c, d = parts
    lat_first = order == "latlon" or (
        order == "auto"
        and abs(a) <= 90 and abs(c) <= 90 and abs(b) <= 180 and abs(d) <= 180
    )
    if lat_first:
        return BoundingBox(
            min_lon=min(b, d), min_lat=min(a, c), max_lon=max(b, d), max_lat=max(a, c),
        )
    return BoundingBox(
        min_lon=min(a, c), min_lat=min(b, d), max_lon=max(a, c), max_lat=max(b, d),
    )


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres between two points."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2))
        * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def filter_by_bbox(jobs: list[Job], bbox: BoundingBox) -> list[Job]:
    return [
        j for j in jobs
        if j.lat is not None and j.lon is not None and bbox.contains(j.lat, j.lon)
    ]


def filter_by_radius(
    jobs: list[Job],
    center_lat: float,
    center_lon: float,
    radius_km: float,
) -> list[Job]:
    """Keep jobs whose haversine distance to the center is ≤ radius_km."""
    return [
        j for j in jobs
        if j.lat is not None
        and j.lon is not None
        and haversine_km(center_lat, center_lon, j.lat, j.lon) <= radius_km
    ]


def filter_jobs(
    jobs: list[Job],
    bbox: BoundingBox | None = None,
    center: tuple[float, float] | None = None,
    radius_km: float | None = None,
) -> list[Job]:
    """Apply a bbox filter, else a center+radius filter, else return a copy."""
    if bbox is not None:
        return filter_by_bbox(jobs, bbox)
    if center is not None and radius_km:
        return filter_by_radius(jobs, center[0], center[1], radius_km)
    return list(jobs)


def sort_jobs(jobs: list[Job], criterion: SortOrder | str | None) -> list[Job]:
    """Return jobs sorted by the given criterion; unknown criteria keep input order."""
    if criterion == "salary_desc":
        return sorted(jobs, key=lambda j: j.salary_max or 0, reverse=True)
    if criterion == "salary_asc":
        return sorted(jobs, key=lambda j: j.salary_min or 0)
    if criterion == "date_desc":
        return sorted(jobs, key=lambda j: _posted_timestamp(j.posted_at), reverse=True)
    return list(jobs)


def _posted_timestamp(posted_at: str | None) -> float:
    """Parse an ISO-ish timestamp to epoch seconds; missing or bad → epoch 0."""
    if not posted_at:
        return 0.0
    try:
        parsed = datetime.fromisoformat(posted_at.strip().replace("Z", "+00:00"))
    except ValueError:
        return 0.0
    if parsed.tzinfo is None:
        # Naive timestamps are read as UTC.
        return (parsed - _EPOCH).total_seconds()
    return parsed.timestamp()
