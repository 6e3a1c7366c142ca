"""Adzuna job search API client.

Docs: https://developer.adzuna.com/docs/search

Requests carry the ``app_id``/``app_key`` credential pair. Missing credentials
fail fast in production and only warn in development.
"""

import logging
from typing import Any

import httpx

from src.core.config import AdzunaConfig, Credentials
from src.core.exceptions import ConfigurationError, UpstreamError
from src.core.schemas import SearchPage
from src.pipeline.throttle import ProviderThrottle
from src.sources.base import JobSource, SourceQuery

logger = logging.getLogger(__name__)


class AdzunaSource(JobSource):
    """Fetch raw job records page by page from Adzuna.

    The httpx client is injected so callers own its lifecycle (and tests can
    pass a client built on ``httpx.MockTransport``).
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        credentials: Credentials,
        config: AdzunaConfig | None = None,
        *,
        production: bool = False,
        throttle: ProviderThrottle | None = None,
    ) -> None:
        self._client = client
        self._credentials = credentials
        self._config = config or AdzunaConfig()
        self._production = production
        self._throttle = throttle

    @property
    def source_id(self) -> str:
        return "adzuna"

    def check_credentials(self) -> None:
        """Raise ConfigurationError in production when credentials are missing."""
        if self._credentials.has_adzuna:
            return
        if self._production:
            msg = "ADZUNA_APP_ID and ADZUNA_APP_KEY are required in production"
            raise ConfigurationError(
                msg, hint="ADZUNA_APP_ID and ADZUNA_APP_KEY must be set in production",
            )
        logger.warning("ADZUNA_APP_ID/ADZUNA_APP_KEY not set; upstream calls will likely fail")

    def build_request(
        self,
        page: int,
        results_per_page: int,
        query: SourceQuery | None = None,
    ) -> tuple[str, dict[str, Any]]:
        """Return (url, params) for a search page. Page size is clamped to 1..100."""
        url = f"{self._config.base_url.rstrip('/')}/{self._config.country}/search/{max(page, 1)}"
        params: dict[str, Any] = {
            "app_id": self._credentials.adzuna_app_id,
            "app_key": self._credentials.adzuna_app_key,
            "results_per_page": min(100, max(1, results_per_page)),
            "content": "full",
        }
        if query is not None:
            if query.keyword:
                params["what"] = query.keyword
            if query.city:
                params["where"] = query.city
            if query.min_salary:
                params["salary_min"] = query.min_salary
            if query.max_salary:
                params["salary_max"] = query.max_salary
        return url, params

    async def fetch_page(
        self,
        page: int,
        results_per_page: int,
        query: SourceQuery | None = None,
    ) -> SearchPage:
        self.check_credentials()
        if self._throttle is not None:
            return await self._throttle.run(self._fetch, page, results_per_page, query)
        return await self._fetch(page, results_per_page, query)

    async def _fetch(
        self,
        page: int,
        results_per_page: int,
        query: SourceQuery | None,
    ) -> SearchPage:
        url, params = self.build_request(page, results_per_page, query)
        logger.info("Fetching Adzuna page %d (%d per page)", page, params["results_per_page"])
        try:
            resp = await self._client.get(
                url,
                params=params,
                headers={"Accept": "application/json"},
                timeout=self._config.timeout_s,
            )
        except httpx.HTTPError as e:
            raise UpstreamError("Adzuna", None, str(e)) from e

        if not resp.is_success:
            raise UpstreamError("Adzuna", resp.status_code, resp.text)

        try:
            payload = resp.json()
        except ValueError as e:
            raise UpstreamError("Adzuna", resp.status_code, f"invalid JSON: {e}") from e

        results = payload.get("results") if isinstance(payload, dict) else None
        if not isinstance(results, list):
            logger.warning("Adzuna page %d has no result list", page)
            return SearchPage(results=[], count=None)
        count = payload.get("count")
        return SearchPage(
            results=[r for r in results if isinstance(r, dict)],
            count=count if isinstance(count, int) else None,
        )
