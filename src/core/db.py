"""SQLite storage layer for jobs, the durable geocode cache, and import runs."""

import sqlite3
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path

from src.core.schemas import Coordinates, Job
from src.pipeline.spatial import haversine_km

DEFAULT_LIMIT = 100
MAX_LIMIT = 1000

_JOBS_TABLE = """
CREATE TABLE IF NOT EXISTS jobs (
    id              TEXT    NOT NULL,
    source          TEXT    NOT NULL DEFAULT 'adzuna',
    source_id       TEXT,
    title           TEXT    NOT NULL,
    company         TEXT    NOT NULL,
    city            TEXT    NOT NULL,
    salary_min      INTEGER,
    salary_max      INTEGER,
    url             TEXT,
    description     TEXT,
    posted_at       TEXT,
    remote          INTEGER NOT NULL DEFAULT 0,
    lat             REAL,
    lon             REAL,
    uniq_hash       TEXT    NOT NULL UNIQUE,
    created_at      TEXT    NOT NULL,
    updated_at      TEXT    NOT NULL
);
"""

_JOBS_INDEX = "CREATE INDEX IF NOT EXISTS idx_jobs_lat_lon ON jobs (lat, lon);"

_GEOCODE_CACHE_TABLE = """
CREATE TABLE IF NOT EXISTS geocode_cache (
    key         TEXT PRIMARY KEY,
    lat         REAL,
    lon         REAL,
    created_at  TEXT NOT NULL
);
"""

_IMPORT_RUNS_TABLE = """
CREATE TABLE IF NOT EXISTS import_runs (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    source          TEXT    NOT NULL,
    pages           INTEGER NOT NULL,
    fetched         INTEGER NOT NULL,
    normalized      INTEGER NOT NULL,
    geocoded        INTEGER NOT NULL,
    imported        INTEGER NOT NULL,
    started_at      TEXT    NOT NULL,
    finished_at     TEXT    NOT NULL
);
"""

_JOB_COLUMNS = (
    "id", "source", "source_id", "title", "company", "city", "salary_min",
    "salary_max", "url", "description", "posted_at", "remote", "lat", "lon",
    "uniq_hash",
)


def init_db(path: str | Path) -> sqlite3.Connection:
    """Create the database and tables, returning a connection.

    Registers ``haversine_km(lat1, lon1, lat2, lon2)`` as a SQL function so the
    proximity query can run inside SQLite.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.create_function("haversine_km", 4, haversine_km, deterministic=True)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute(_JOBS_TABLE)
    conn.execute(_JOBS_INDEX)
    conn.execute(_GEOCODE_CACHE_TABLE)
    conn.execute(_IMPORT_RUNS_TABLE)
    conn.commit()
    return conn


def upsert_jobs(conn: sqlite3.Connection, jobs: Iterable[Job]) -> int:
    """Insert jobs, merging into existing rows that share a ``uniq_hash``.

    Within one batch, a later job with the same hash replaces the earlier one
    before writing (a row is never written twice in the same statement batch).

    Returns the number of rows written.
    """
    by_hash: dict[str, Job] = {}
    for job in jobs:
        by_hash[job.uniq_hash] = job
    if not by_hash:
        return 0

    now = datetime.now().isoformat()
    updates = ", ".join(
        f"{col} = excluded.{col}" for col in _JOB_COLUMNS if col != "uniq_hash"
    )
    sql = f"""
        INSERT INTO jobs ({", ".join(_JOB_COLUMNS)}, created_at, updated_at)
        VALUES ({", ".join("?" for _ in _JOB_COLUMNS)}, ?, ?)
        ON CONFLICT(uniq_hash) DO UPDATE SET {updates}, updated_at = excluded.updated_at
    """
    before = conn.total_changes
    conn.executemany(sql, [(*_job_values(j), now, now) for j in by_hash.values()])
    conn.commit()
    return conn.total_changes - before


def jobs_within_km(
    conn: sqlite3.Connection,
    lat: float,
    lon: float,
    km: float,
    q: str | None = None,
    city_q: str | None = None,
    limit_rows: int = DEFAULT_LIMIT,
) -> list[Job]:
    """Return jobs within ``km`` of a point, nearest first, then most recent.

    ``q`` matches title, company or description; ``city_q`` matches city; both
    are case-insensitive substring filters. ``limit_rows`` is clamped to 1..1000.
    """
    limit = min(max(limit_rows, 1), MAX_LIMIT)
    clauses = ["lat IS NOT NULL", "lon IS NOT NULL", "distance_km <= ?"]
    params: list[object] = [lat, lon, km]
    if q:
        clauses.append("(title LIKE ? OR company LIKE ? OR description LIKE ?)")
        params.extend([f"%{q}%"] * 3)
    if city_q:
        clauses.append("city LIKE ?")
        params.append(f"%{city_q}%")
    params.append(limit)

    rows = conn.execute(
        f"""
        SELECT * FROM (
            SELECT *,
                CASE WHEN lat IS NULL OR lon IS NULL THEN NULL
                     ELSE haversine_km(?, ?, lat, lon) END AS distance_km
            FROM jobs
        )
        WHERE {" AND ".join(clauses)}
        ORDER BY distance_km ASC, COALESCE(posted_at, created_at) DESC
        LIMIT ?
        """,
        params,
    ).fetchall()
    return [_row_to_job(r) for r in rows]


def fetch_jobs(
    conn: sqlite3.Connection,
    q: str | None = None,
    city_q: str | None = None,
    min_salary: int | None = None,
    max_salary: int | None = None,
    limit_rows: int = DEFAULT_LIMIT,
    offset: int = 0,
) -> list[Job]:
    """Return stored jobs matching simple text and salary filters, most recent first."""
    limit = min(max(limit_rows, 1), MAX_LIMIT)
    clauses = ["1 = 1"]
    params: list[object] = []
    if q:
        clauses.append("(title LIKE ? OR company LIKE ? OR description LIKE ?)")
        params.extend([f"%{q}%"] * 3)
    if city_q:
        clauses.append("city LIKE ?")
        params.append(f"%{city_q}%")
    if min_salary is not None:
        clauses.append("COALESCE(salary_max, salary_min) >= ?")
        params.append(min_salary)
    if max_salary is not None:
        clauses.append("COALESCE(salary_min, salary_max) <= ?")
        params.append(max_salary)
    params.extend([limit, max(offset, 0)])

    rows = conn.execute(
        f"""
        SELECT * FROM jobs
        WHERE {" AND ".join(clauses)}
        ORDER BY COALESCE(posted_at, created_at) DESC, id ASC
        LIMIT ? OFFSET ?
        """,
        params,
    ).fetchall()
    return [_row_to_job(r) for r in rows]


def count_jobs(conn: sqlite3.Connection) -> int:
    row = conn.execute("SELECT COUNT(*) AS cnt FROM jobs").fetchone()
    return int(row["cnt"])


def get_geocode(
    conn: sqlite3.Connection,
    key: str,
) -> tuple[bool, Coordinates | None]:
    """Look up a cached geocode.

    Returns ``(found, coords)``; ``(True, None)`` is a cached negative result.
    """
    row = conn.execute(
        "SELECT lat, lon FROM geocode_cache WHERE key = ?", (key,),
    ).fetchone()
    if row is None:
        return (False, None)
    if row["lat"] is None or row["lon"] is None:
        return (True, None)
    return (True, Coordinates(lat=row["lat"], lon=row["lon"]))


def put_geocode(
    conn: sqlite3.Connection,
    key: str,
    coords: Coordinates | None,
) -> None:
    """Store a geocode result; the first write for a key wins."""
    conn.execute(
        """
        INSERT INTO geocode_cache (key, lat, lon, created_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(key) DO NOTHING
        """,
        (
            key,
            coords.lat if coords else None,
            coords.lon if coords else None,
            datetime.now().isoformat(),
        ),
    )
    conn.commit()


def insert_import_run(
    conn: sqlite3.Connection,
    source: str,
    pages: int,
    fetched: int,
    normalized: int,
    geocoded: int,
    imported: int,
    started_at: datetime,
    finished_at: datetime,
) -> int:
    """Record a completed import run. Returns the row ID."""
    cursor = conn.execute(
        """
        INSERT INTO import_runs
            (source, pages, fetched, normalized, geocoded, imported, started_at, finished_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            source,
            pages,
            fetched,
            normalized,
            geocoded,
            imported,
            started_at.isoformat(),
            finished_at.isoformat(),
        ),
    )
    conn.commit()
    return cursor.lastrowid or 0


def _job_values(job: Job) -> tuple[object, ...]:
    values = job.model_dump()
    values["remote"] = int(job.remote)
    return tuple(values[col] for col in _JOB_COLUMNS)


def _row_to_job(row: sqlite3.Row) -> Job:
    data = {col: row[col] for col in _JOB_COLUMNS}
    data["remote"] = bool(data["remote"])
    return Job.model_validate(data)
