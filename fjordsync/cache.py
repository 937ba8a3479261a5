from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel

from fjordsync.config import settings
from fjordsync.models import Token

Clock = Callable[[], float]


class CacheEntry(BaseModel):
    """Typed snapshot held by a single-entry cache."""

    data: Any = None
    fetched_at: float | None = None
    ttl: float
    key: Any = None
    error: str | None = None


class TTLCache:
    """Single-entry cache with a fixed time-to-live.

    ``read()`` only hands back fresh data; ``last_known()`` ignores age and
    is what the data services fall back to when the upstream is down.
    An optional *key* pins the entry to one parameterisation (for example
    a ``(year, week)`` pair); reading with another key is a miss.
    """

    def __init__(self, name: str, ttl: float, clock: Clock = time.time) -> None:
        self.name = name
        self._clock = clock
        self._entry = CacheEntry(ttl=ttl)
        # Held while a refresh is in flight so concurrent misses wait for it
        self.refresh_lock = asyncio.Lock()

    @property
    def ttl(self) -> float:
        return self._entry.ttl

    def is_stale(self) -> bool:
        fetched_at = self._entry.fetched_at
        if fetched_at is None:
            return True
        return (self._clock() - fetched_at) >= self._entry.ttl

    def read(self, key: Any = None) -> Any:
        if self.is_stale() or self._entry.key != key:
            return None
        return self._entry.data

    def last_known(self, key: Any = None) -> Any:
        if self._entry.fetched_at is None or self._entry.key != key:
            return None
        return self._entry.data

    def write(self, data: Any, key: Any = None) -> None:
        self._entry = CacheEntry(
            data=data,
            fetched_at=self._clock(),
            ttl=self._entry.ttl,
            key=key,
        )

    def set_error(self, error: str) -> None:
        self._entry.error = error

    def invalidate(self) -> None:
        self._entry = CacheEntry(ttl=self._entry.ttl)

    def status(self) -> dict[str, Any]:
        fetched_at = self._entry.fetched_at
        if fetched_at is None:
            return {"cached": False, "age_seconds": None, "expires_in_seconds": None,
                    "error": self._entry.error}
        age = self._clock() - fetched_at
        return {
            "cached": True,
            "age_seconds": round(age),
            "expires_in_seconds": max(0, round(self._entry.ttl - age)),
            "error": self._entry.error,
        }


class CacheStore:
    """The fixed registry of named caches, one per process.

    Built in the app lifespan and handed to every service that needs it.
    """

    def __init__(
        self,
        *,
        zones_ttl: float = settings.ZONES_TTL,
        fish_health_ttl: float = settings.FISH_HEALTH_TTL,
        registry_ttl: float = settings.REGISTRY_TTL,
        clock: Clock = time.time,
    ) -> None:
        self.clock = clock
        self.disease_zones = TTLCache("disease_zones", zones_ttl, clock)
        self.protected_areas = TTLCache("protected_areas", zones_ttl, clock)
        self.locality_polygons = TTLCache("locality_polygons", zones_ttl, clock)
        self.fish_health = TTLCache("fish_health", fish_health_ttl, clock)
        self.lice_data = TTLCache("lice_data", fish_health_ttl, clock)
        self.detailed_polygons = TTLCache("detailed_polygons", zones_ttl, clock)
        self.registry_localities = TTLCache("registry_localities", registry_ttl, clock)
        self.token: Token | None = None

    def caches(self) -> list[TTLCache]:
        return [
            self.disease_zones,
            self.protected_areas,
            self.locality_polygons,
            self.fish_health,
            self.lice_data,
            self.detailed_polygons,
            self.registry_localities,
        ]

    def invalidate_zones(self) -> None:
        self.disease_zones.invalidate()
        self.protected_areas.invalidate()
        self.locality_polygons.invalidate()
        self.detailed_polygons.invalidate()

    def invalidate_all(self) -> None:
        for c in self.caches():
            c.invalidate()
        self.token = None

    def status(self) -> dict[str, dict[str, Any]]:
        """Return {name: status} for every cache in the registry."""
        return {c.name: c.status() for c in self.caches()}
