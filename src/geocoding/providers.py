"""Geocoding providers: Mapbox (token-gated primary) and Nominatim (public secondary).

Providers return None for "no result" and for non-2xx responses. Transport
errors propagate as ``httpx.HTTPError`` so the resolver can log and fall through.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any
from urllib.parse import quote

import httpx

from src.core.config import GeocodingConfig
from src.core.schemas import Coordinates

logger = logging.getLogger(__name__)

MAPBOX_URL = "https://api.mapbox.com/geocoding/v5/mapbox.places/{query}.json"
NOMINATIM_URL = "https://nominatim.openstreetmap.org/search"


class GeocodeProvider(ABC):
    """Base class that every geocoding provider must implement."""

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Unique identifier for this provider (e.g. 'mapbox')."""

    @property
    def enabled(self) -> bool:
        """Whether the provider can be called (e.g. a credential is configured)."""
        return True

    @abstractmethod
    async def geocode(self, query: str) -> Coordinates | None:
        """Return the best match for a free-text query, or None."""


class MapboxProvider(GeocodeProvider):
    """Commercial geocoder. Results carry ``center = [lon, lat]``."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        token: str,
        config: GeocodingConfig | None = None,
    ) -> None:
        self._client = client
        self._token = token
        self._config = config or GeocodingConfig()

    @property
    def provider_id(self) -> str:
        return "mapbox"

    @property
    def enabled(self) -> bool:
        return bool(self._token)

    async def geocode(self, query: str) -> Coordinates | None:
        if not self.enabled:
            return None
        url = MAPBOX_URL.format(query=quote(query, safe=""))
        resp = await self._client.get(
            url,
            params={
                "access_token": self._token,
                "country": self._config.country,
                "limit": 1,
            },
            timeout=self._config.timeout_s,
        )
        if not resp.is_success:
            logger.debug("Mapbox returned %d for %r", resp.status_code, query)
            return None
        return _parse_mapbox(resp.json())


class NominatimProvider(GeocodeProvider):
    """Public OpenStreetMap geocoder. Must identify itself with a User-Agent.

    Callers are expected to route requests through a ProviderThrottle.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        config: GeocodingConfig | None = None,
    ) -> None:
        self._client = client
        self._config = config or GeocodingConfig()

    @property
    def provider_id(self) -> str:
        return "nominatim"

    async def geocode(self, query: str) -> Coordinates | None:
        resp = await self._client.get(
            NOMINATIM_URL,
            params={
                "format": "json",
                "q": query,
                "countrycodes": self._config.country,
                "limit": 1,
            },
            headers={"User-Agent": self._config.user_agent},
            timeout=self._config.timeout_s,
        )
        if not resp.is_success:
            logger.debug("Nominatim returned %d for %r", resp.status_code, query)
            return None
        return _parse_nominatim(resp.json())


def _parse_mapbox(payload: Any) -> Coordinates | None:
    features = payload.get("features") if isinstance(payload, dict) else None
    if not features:
        return None
    first = features[0] if isinstance(features, list) else None
    if not isinstance(first, dict):
        return None
    center = first.get("center")
    if not isinstance(center, list) or len(center) < 2:
        return None
    return Coordinates(lat=float(center[1]), lon=float(center[0]))


def _parse_nominatim(payload: Any) -> Coordinates | None:
    if not isinstance(payload, list) or not payload:
        return None
    item = payload[0]
    # Nominatim reports coordinates as strings.
    return Coordinates(lat=float(item["lat"]), lon=float(item["lon"]))
