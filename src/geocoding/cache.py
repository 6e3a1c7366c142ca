"""Geocode cache backends.

A stored ``None`` is a negative result ("unresolvable") and counts as a hit.
Entries are write-once: the first result stored for a key is kept.
"""

import sqlite3
from typing import Protocol, runtime_checkable

from src.core.db import get_geocode, put_geocode
from src.core.schemas import Coordinates


def cache_key(company: str | None, city: str | None) -> str:
    """Build the normalized ``company|city`` lookup key."""
    return f"{(company or '').strip().lower()}|{(city or '').strip().lower()}"


@runtime_checkable
class GeocodeCache(Protocol):
    """Storage contract shared by the in-memory and SQLite caches."""

    def lookup(self, key: str) -> tuple[bool, Coordinates | None]:
        """Return ``(found, coords)``; ``(True, None)`` is a cached negative."""
        ...

    def store(self, key: str, coords: Coordinates | None) -> None:
        ...


class InMemoryGeocodeCache:
    """Process-local cache; one instance per process or per test."""

    def __init__(self) -> None:
        self._entries: dict[str, Coordinates | None] = {}

    def lookup(self, key: str) -> tuple[bool, Coordinates | None]:
        if key in self._entries:
            return (True, self._entries[key])
        return (False, None)

    def store(self, key: str, coords: Coordinates | None) -> None:
        self._entries.setdefault(key, coords)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries


class SqliteGeocodeCache:
    """Durable cache backed by the ``geocode_cache`` table."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def lookup(self, key: str) -> tuple[bool, Coordinates | None]:
        return get_geocode(self._conn, key)

    def store(self, key: str, coords: Coordinates | None) -> None:
        put_geocode(self._conn, key, coords)
