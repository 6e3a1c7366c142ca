"""Map heterogeneous upstream job records onto the canonical Job model.

Every field is defaulted independently; missing data never raises. A record
whose shape is too broken to map is dropped (normalize returns None).
"""

import hashlib
import logging
import math
import re
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from src.core.exceptions import NormalizationError
from src.core.schemas import Job

logger = logging.getLogger(__name__)

DESCRIPTION_MAX_CHARS = 4000
UNIQ_HASH_LENGTH = 40

DEFAULT_TITLE = "No title"
DEFAULT_COMPANY = "Unknown"
DEFAULT_CITY = "Unknown"

_TAG_RE = re.compile(r"<[^>]+>")


class RawJobRecord(BaseModel):
    """Loose view of an upstream record; unknown keys are kept, nothing is coerced."""

    model_config = ConfigDict(extra="allow")

    id: Any = None
    job_id: Any = None
    title: Any = None
    company: Any = None
    location: Any = None
    location_display_name: Any = None
    salary_min: Any = None
    salary_max: Any = None
    contract_type: Any = None
    remote: Any = None
    latitude: Any = None
    longitude: Any = None
    redirect_url: Any = None
    url: Any = None
    source_url: Any = None
    description: Any = None
    summary: Any = None
    created: Any = None
    publication_date: Any = None


def compute_uniq_hash(
    title: str,
    company: str,
    city: str,
    posted_at: str | None,
) -> str:
    """Stable dedup fingerprint of ``title|company|city|posted_at``, lowercased."""
    parts = (title, company, city, posted_at or "")
    joined = "|".join(str(p).strip().lower() for p in parts)
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()[:UNIQ_HASH_LENGTH]


def strip_html(text: str, max_chars: int = DESCRIPTION_MAX_CHARS) -> str:
    """Remove HTML tags and cap the length."""
    return _TAG_RE.sub("", text)[:max_chars]


def normalize(raw: dict[str, Any], source: str = "adzuna") -> Job | None:
    """Convert one raw upstream record into a Job, or None if it cannot be mapped."""
    try:
        return _normalize(raw, source)
    except (NormalizationError, ValidationError, TypeError, ValueError, AttributeError) as e:
        logger.debug("Dropping unmappable record: %s", e)
        return None


def normalize_all(raws: list[dict[str, Any]], source: str = "adzuna") -> list[Job]:
    """Normalize a batch, discarding records that fail."""
    jobs = [j for j in (normalize(r, source) for r in raws) if j is not None]
    dropped = len(raws) - len(jobs)
    if dropped:
        logger.info("Normalizer dropped %d of %d records", dropped, len(raws))
    return jobs


def _normalize(raw: dict[str, Any], source: str) -> Job:
    if not isinstance(raw, dict):
        msg = f"expected a mapping, got {type(raw).__name__}"
        raise NormalizationError(msg)
    rec = RawJobRecord.model_validate(raw)
    location = rec.location if isinstance(rec.location, dict) else {}

    title = _text(rec.title) or DEFAULT_TITLE
    company = _company(rec.company)
    city = _city(rec, location)
    posted_at = _text(rec.created) or _text(rec.publication_date)

    source_id = _text(rec.id) or _text(rec.job_id)
    lat, lon = _coordinates(rec, location)

    description_raw = rec.description or rec.summary
    description = strip_html(str(description_raw)) if description_raw else None

    return Job(
        id=source_id or f"{title}-{company}-{city}",
        source=source,
        source_id=source_id,
        title=title,
        company=company,
        city=city,
        description=description,
        url=_text(rec.redirect_url) or _text(rec.url) or _text(rec.source_url),
        posted_at=posted_at,
        salary_min=_salary(rec.salary_min),
        salary_max=_salary(rec.salary_max),
        remote=_is_remote(rec),
        lat=lat,
        lon=lon,
        uniq_hash=compute_uniq_hash(title, company, city, posted_at),
    )


def _text(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _company(value: Any) -> str:
    if isinstance(value, dict):
        return _text(value.get("display_name")) or DEFAULT_COMPANY
    return _text(value) or DEFAULT_COMPANY


def _city(rec: RawJobRecord, location: dict[str, Any]) -> str:
    city = _text(location.get("display_name")) or _text(rec.location_display_name)
    if city:
        return city
    area = location.get("area")
    if isinstance(area, list) and area:
        return _text(area[-1]) or DEFAULT_CITY
    return DEFAULT_CITY


def _salary(value: Any) -> int | None:
    if not value or isinstance(value, bool):
        return None
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(amount) or math.isinf(amount) or amount < 0:
        return None
    return round(amount)


def _is_remote(rec: RawJobRecord) -> bool:
    contract = rec.contract_type
    if contract and "remote" in str(contract).lower():
        return True
    return bool(rec.remote)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _coordinates(
    rec: RawJobRecord,
    location: dict[str, Any],
) -> tuple[float | None, float | None]:
    """Take coordinates only when both are numeric on the same object."""
    if _is_number(rec.latitude) and _is_number(rec.longitude):
        return float(rec.latitude), float(rec.longitude)
    lat, lon = location.get("latitude"), location.get("longitude")
    if _is_number(lat) and _is_number(lon):
        return float(lat), float(lon)
    return None, None
