"""Secret-gated import trigger, run on a schedule by an external cron."""

import hmac
import logging
import sqlite3
from collections.abc import Mapping

from src.core.config import Settings
from src.core.exceptions import JobMapError
from src.core.schemas import ErrorResponse, ImportSummary
from src.geocoding.resolver import GeocodeResolver
from src.pipeline.ingest import run_import
from src.sources.base import JobSource

logger = logging.getLogger(__name__)

SECRET_HEADER = "x-cron-secret"


async def trigger_import(
    settings: Settings,
    headers: Mapping[str, str],
    source: JobSource,
    resolver: GeocodeResolver,
    conn: sqlite3.Connection,
) -> ImportSummary | ErrorResponse:
    """Check the shared secret and credentials, then run the configured import."""
    lowered = {k.lower(): v for k, v in headers.items()}
    provided = lowered.get(SECRET_HEADER, "")
    expected = settings.credentials.cron_secret
    if not expected or not hmac.compare_digest(provided.encode(), expected.encode()):
        logger.warning("Import trigger rejected: bad or missing %s", SECRET_HEADER)
        return ErrorResponse(
            message="Unauthorized",
            hint=f"Invalid or missing {SECRET_HEADER} header",
            status=401,
        )

    if not settings.credentials.has_adzuna:
        return ErrorResponse(
            message="Server misconfiguration",
            hint="ADZUNA_APP_ID and ADZUNA_APP_KEY must be set",
        )

    try:
        return await run_import(
            source,
            resolver,
            conn,
            pages=settings.importer.pages,
            results_per_page=settings.importer.results_per_page,
        )
    except (JobMapError, sqlite3.Error) as e:
        logger.error("Import failed: %s", e)
        return ErrorResponse(message="Import failed", hint=str(e))
    except Exception as e:
        logger.exception("Unexpected error during import")
        return ErrorResponse(message="Import failed", hint=str(e) or "Unknown error")
