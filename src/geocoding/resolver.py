"""Resolve (company, city) pairs to coordinates.

Lookup order:
  1. Cache (a cached negative is a hit)
  2. Primary provider, when enabled
  3. Secondary provider, through the provider throttle
  4. Cache and return None when both miss

Concurrent callers for the same key share one in-flight lookup.
"""

import asyncio
import logging

from src.core.schemas import Coordinates
from src.geocoding.cache import GeocodeCache, InMemoryGeocodeCache, cache_key
from src.geocoding.providers import GeocodeProvider
from src.pipeline.throttle import ProviderThrottle

logger = logging.getLogger(__name__)


class GeocodeResolver:
    """Cache-backed primary/secondary geocoding fallback.

    Usage::

        resolver = GeocodeResolver(primary=mapbox, secondary=nominatim,
                                   throttle=ProviderThrottle(1, 1.0))
        coords = await resolver.resolve("Acme", "Lyon")
    """

    def __init__(
        self,
        primary: GeocodeProvider | None,
        secondary: GeocodeProvider | None,
        throttle: ProviderThrottle | None = None,
        cache: GeocodeCache | None = None,
    ) -> None:
        self._primary = primary
        self._secondary = secondary
        self._throttle = throttle or ProviderThrottle(limit=1, interval_s=1.0, name="geocode")
        self._cache: GeocodeCache = cache if cache is not None else InMemoryGeocodeCache()
        self._in_flight: dict[str, asyncio.Future[Coordinates | None]] = {}
        self.provider_calls = 0

    @property
    def cache(self) -> GeocodeCache:
        return self._cache

    async def resolve(
        self,
        company: str | None = None,
        city: str | None = None,
    ) -> Coordinates | None:
        """Return coordinates for the pair, or None if unresolvable."""
        if not (company or "").strip() and not (city or "").strip():
            return None

        key = cache_key(company, city)
        found, coords = self._cache.lookup(key)
        if found:
            logger.debug("Geocode cache hit for '%s'", key)
            return coords

        pending = self._in_flight.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._lookup(key, _build_query(company, city)))
            self._in_flight[key] = pending
            pending.add_done_callback(lambda _f: self._in_flight.pop(key, None))
        # Shielded so an abandoned caller does not cancel a lookup others share.
        return await asyncio.shield(pending)

    async def _lookup(self, key: str, query: str) -> Coordinates | None:
        result: Coordinates | None = None

        if self._primary is not None and self._primary.enabled:
            result = await self._try(self._primary, query)

        if result is None and self._secondary is not None and self._secondary.enabled:
            result = await self._try(self._secondary, query, throttled=True)

        if result is None:
            logger.info("Geocode unresolved for '%s', caching negative result", key)
        self._cache.store(key, result)
        return result

    async def _try(
        self,
        provider: GeocodeProvider,
        query: str,
        *,
        throttled: bool = False,
    ) -> Coordinates | None:
        self.provider_calls += 1
        try:
            if throttled:
                return await self._throttle.run(provider.geocode, query)
            return await provider.geocode(query)
        except Exception:
            logger.warning(
                "Geocode via %s failed for %r, treating as a miss",
                provider.provider_id,
                query,
                exc_info=True,
            )
            return None


def _build_query(company: str | None, city: str | None) -> str:
    company = (company or "").strip()
    city = (city or "").strip()
    return f"{company} {city}".strip() if company else city
