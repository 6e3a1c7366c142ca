"""Ingestion pipeline: wires source, normalizer, geocoder, and DB upsert.

Data flow:
  1. Fetch pages sequentially (never in parallel, to stay polite upstream)
  2. Normalize raw records → Jobs, dropping unmappable ones
  3. Geocode only the jobs lacking coordinates
  4. Batch upsert keyed by uniq_hash (merge on conflict)
  5. Record the import run

An upstream error on any page aborts the whole run; the importer is expected
to be re-run wholesale on its schedule.
"""

import logging
import sqlite3
from datetime import datetime
from typing import Any

from src.core.db import insert_import_run, upsert_jobs
from src.core.schemas import ImportSummary, Job
from src.geocoding.resolver import GeocodeResolver
from src.pipeline.normalizer import normalize_all
from src.sources.base import JobSource, SourceQuery

logger = logging.getLogger(__name__)

DEFAULT_PAGES = (1, 2, 3)
DEFAULT_RESULTS_PER_PAGE = 50


async def fill_coordinates(jobs: list[Job], resolver: GeocodeResolver) -> tuple[list[Job], int]:
    """Geocode jobs without coordinates. Jobs that already have them are untouched.

    Returns the updated list and how many jobs gained coordinates.
    """
    filled: list[Job] = []
    geocoded = 0
    for job in jobs:
        if job.has_coordinates:
            filled.append(job)
            continue
        coords = await resolver.resolve(job.company, job.city)
        if coords is not None:
            job = job.with_coordinates(coords)
            geocoded += 1
        filled.append(job)
    return filled, geocoded


async def run_import(
    source: JobSource,
    resolver: GeocodeResolver,
    conn: sqlite3.Connection,
    pages: list[int] | tuple[int, ...] = DEFAULT_PAGES,
    results_per_page: int = DEFAULT_RESULTS_PER_PAGE,
    query: SourceQuery | None = None,
) -> ImportSummary:
    """Run one import over the given pages and return its summary."""
    started_at = datetime.now()

    # Step 1: sequential page fetches
    raw_records: list[dict[str, Any]] = []
    for page in pages:
        result = await source.fetch_page(page, results_per_page, query)
        logger.info("Page %d: %d raw records", page, len(result.results))
        raw_records.extend(result.results)

    # Step 2: normalize
    jobs = normalize_all(raw_records, source=source.source_id)
    if not jobs:
        logger.info("No records survived normalization; nothing to upsert")
        return ImportSummary(
            imported=0,
            pages=len(pages),
            fetched=len(raw_records),
            started_at=started_at,
            finished_at=datetime.now(),
        )

    # Step 3: geocode gaps
    jobs, geocoded = await fill_coordinates(jobs, resolver)

    # Step 4: upsert
    imported = upsert_jobs(conn, jobs)

    finished_at = datetime.now()
    summary = ImportSummary(
        imported=imported,
        pages=len(pages),
        fetched=len(raw_records),
        normalized=len(jobs),
        geocoded=geocoded,
        started_at=started_at,
        finished_at=finished_at,
    )

    # Step 5: record the run
    insert_import_run(
        conn,
        source=source.source_id,
        pages=summary.pages,
        fetched=summary.fetched,
        normalized=summary.normalized,
        geocoded=summary.geocoded,
        imported=summary.imported,
        started_at=started_at,
        finished_at=finished_at,
    )

    logger.info(
        "Import: %d fetched, %d normalized, %d geocoded, %d imported",
        summary.fetched, summary.normalized, summary.geocoded, summary.imported,
    )
    return summary
