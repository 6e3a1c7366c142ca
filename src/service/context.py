"""Process-level wiring: one HTTP client, one DB connection, and the stateful
components (geocode cache, throttles, rate limiter) built once per context.
"""

import logging
import sqlite3
from types import TracebackType

import httpx

from src.core.config import Settings
from src.core.db import init_db
from src.geocoding.cache import GeocodeCache, InMemoryGeocodeCache, SqliteGeocodeCache
from src.geocoding.providers import MapboxProvider, NominatimProvider
from src.geocoding.resolver import GeocodeResolver
from src.pipeline.rate_limiter import RateLimiter
from src.pipeline.throttle import ProviderThrottle
from src.sources.adzuna import AdzunaSource

logger = logging.getLogger(__name__)


class ServiceContext:
    """Async context manager that owns the shared clients and stateful components.

    Usage::

        async with ServiceContext(settings) as ctx:
            summary = await run_import(ctx.source, ctx.resolver, ctx.conn)
    """

    def __init__(
        self,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._conn = conn
        self._owns_conn = conn is None
        self._client: httpx.AsyncClient | None = None
        self._source: AdzunaSource | None = None
        self._resolver: GeocodeResolver | None = None
        self.rate_limiter = RateLimiter(settings.rate_limit)

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            msg = "ServiceContext not entered, use 'async with'"
            raise RuntimeError(msg)
        return self._conn

    @property
    def source(self) -> AdzunaSource:
        if self._source is None:
            msg = "ServiceContext not entered, use 'async with'"
            raise RuntimeError(msg)
        return self._source

    @property
    def resolver(self) -> GeocodeResolver:
        if self._resolver is None:
            msg = "ServiceContext not entered, use 'async with'"
            raise RuntimeError(msg)
        return self._resolver

    async def __aenter__(self) -> "ServiceContext":
        settings = self._settings
        if self._conn is None:
            self._conn = init_db(settings.database.path)
        self._client = httpx.AsyncClient(transport=self._transport, follow_redirects=True)

        self._source = AdzunaSource(
            self._client,
            settings.credentials,
            settings.adzuna,
            production=settings.is_production,
            throttle=ProviderThrottle.from_config(settings.adzuna.throttle, name="adzuna"),
        )

        cache: GeocodeCache
        if settings.geocoding.durable_cache:
            cache = SqliteGeocodeCache(self._conn)
        else:
            cache = InMemoryGeocodeCache()

        mapbox = MapboxProvider(self._client, settings.credentials.mapbox_token, settings.geocoding)
        if not mapbox.enabled:
            logger.info("MAPBOX_TOKEN not set, geocoding via Nominatim only")
        self._resolver = GeocodeResolver(
            primary=mapbox,
            secondary=NominatimProvider(self._client, settings.geocoding),
            throttle=ProviderThrottle.from_config(
                settings.geocoding.nominatim_throttle, name="nominatim",
            ),
            cache=cache,
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._client is not None:
            await self._client.aclose()
        if self._owns_conn and self._conn is not None:
            self._conn.close()
            self._conn = None
